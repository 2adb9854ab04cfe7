"""
server-sweep — filesystem primitives

File: src/server_sweep/utils/fs.py

Purpose
- Provide the small set of filesystem operations the discovery engine relies on
  behind an injectable interface, plus path-prefix helpers and atomic writes.

Functional requirements
- Prefix checks are separator-aware: ``/home/site2`` is not inside ``/home/site``.
- Canonicalization never raises; unresolvable paths fall back to their absolute form.
- Atomic writes use temp files in the destination directory and replace in a single step.

Non-functional requirements
- Standard library only.
"""

from __future__ import annotations

import contextlib
import os
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

PathLike = str | os.PathLike[str]

SEP = os.sep

__all__ = [
    "EntryStat",
    "FileSystem",
    "LocalFileSystem",
    "atomic_write",
    "canonicalize",
    "ensure_trailing_sep",
    "is_within_prefix",
    "strip_trailing_sep",
]


@dataclass(frozen=True, slots=True)
class EntryStat:
    """Subset of ``stat`` results the boundary checks need (symlinks followed)."""

    is_dir: bool
    is_file: bool
    size: int


class FileSystem(Protocol):
    """Filesystem operations consumed by the traversal (injectable for tests)."""

    def list_dir(self, path: str) -> list[str]: ...

    def stat(self, path: str) -> EntryStat: ...

    def canonicalize(self, path: str) -> str: ...

    def is_symlink(self, path: str) -> bool: ...

    def is_readable(self, path: str) -> bool: ...

    def is_dir(self, path: str) -> bool: ...


class LocalFileSystem:
    """:class:`FileSystem` backed by the host OS."""

    def list_dir(self, path: str) -> list[str]:
        """Return entry names sorted by name; raises ``OSError`` on failure."""

        with os.scandir(path) as entries:
            return sorted(entry.name for entry in entries)

    def stat(self, path: str) -> EntryStat:
        result = os.stat(path)
        return EntryStat(
            is_dir=stat.S_ISDIR(result.st_mode),
            is_file=stat.S_ISREG(result.st_mode),
            size=int(result.st_size),
        )

    def canonicalize(self, path: str) -> str:
        return canonicalize(path)

    def is_symlink(self, path: str) -> bool:
        return os.path.islink(path)

    def is_readable(self, path: str) -> bool:
        return os.access(path, os.R_OK)

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)


def canonicalize(path: PathLike) -> str:
    """Resolve symlinks and ``..`` segments without requiring the path to exist."""

    try:
        return os.path.realpath(path)
    except (OSError, ValueError):
        return os.path.abspath(path)


def ensure_trailing_sep(path: str) -> str:
    return path if path.endswith(SEP) else path + SEP


def strip_trailing_sep(path: str) -> str:
    stripped = path.rstrip(SEP)
    return stripped or SEP


def is_within_prefix(path: str, prefix: str, *, inclusive: bool = True) -> bool:
    """Return ``True`` when ``path`` equals ``prefix`` or lies beneath it.

    Both arguments are expected to be canonical. With ``inclusive=False`` the
    prefix itself does not count as inside.
    """

    normalized_prefix = strip_trailing_sep(prefix)
    normalized_path = strip_trailing_sep(path)
    if normalized_path == normalized_prefix:
        return inclusive
    return normalized_path.startswith(ensure_trailing_sep(normalized_prefix))


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        payload = data.encode(encoding) if isinstance(data, str) else data
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise
