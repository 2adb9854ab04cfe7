"""Utility exports for filesystem access and path helpers."""

from server_sweep.utils.fs import (
    EntryStat,
    FileSystem,
    LocalFileSystem,
    atomic_write,
    canonicalize,
    ensure_trailing_sep,
    is_within_prefix,
    strip_trailing_sep,
)
from server_sweep.utils.memfs import MemoryFileSystem

__all__ = [
    "EntryStat",
    "FileSystem",
    "LocalFileSystem",
    "MemoryFileSystem",
    "atomic_write",
    "canonicalize",
    "ensure_trailing_sep",
    "is_within_prefix",
    "strip_trailing_sep",
]
