"""External discovery engine and its status reporter."""

from server_sweep.discovery.engine import DiscoveryEngine, DiscoveryNotCompleteError
from server_sweep.discovery.status import DiscoveryStatus, build_status

__all__ = [
    "DiscoveryEngine",
    "DiscoveryNotCompleteError",
    "DiscoveryStatus",
    "build_status",
]
