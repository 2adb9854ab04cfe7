"""Output rendering helpers for the server-sweep CLI.

File: src/server_sweep/ui/render.py

Purpose
- Provide a thin rendering layer for human-readable CLI output.
- Respect the NO_COLOR environment variable and the --no-color CLI flag.

Non-functional requirements
- Plain text only; JSON output is emitted by the CLI router directly.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

_BOLD = "\033[1m"
_RESET = "\033[0m"


def _color_allowed(no_color_flag: bool) -> bool:
    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


class CLIRenderer:
    """Deterministic plain-text renderer; headings are bold on a color TTY."""

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self._color = _color_allowed(no_color)

    def heading(self, text: str) -> None:
        print(f"{_BOLD}{text}{_RESET}" if self._color else text)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        print(line)

    def items(self, entries: Sequence[str], *, prefix: str = "") -> None:
        for entry in entries:
            print(f"{prefix}{entry}")

    def next_steps(self, steps: Sequence[str]) -> None:
        """Print actionable next-step hints."""

        if not steps:
            return
        print("\nNext steps:")
        for step in steps:
            print(f"  $ {step}")


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
