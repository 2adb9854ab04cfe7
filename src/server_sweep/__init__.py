"""
server-sweep — resumable external discovery engine

File: src/server_sweep/__init__.py

Purpose
- Package root. Finds server files that live outside the protected web root
  (temp, cache, log and jail directories under the account home) so a
  downstream malware matcher can scan them.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
