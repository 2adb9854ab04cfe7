"""In-memory :class:`~server_sweep.utils.fs.FileSystem` for embedding and tests.

Paths are POSIX and absolute. Symlinks store absolute targets and are resolved
component by component, the way ``realpath`` does.
"""

from __future__ import annotations

import errno
import posixpath
from dataclasses import dataclass
from typing import Final, Literal

from server_sweep.utils.fs import EntryStat

NodeKind = Literal["dir", "file", "special", "link"]

_MAX_SYMLINK_HOPS: Final[int] = 40


@dataclass(slots=True)
class _Node:
    kind: NodeKind
    size: int = 0
    readable: bool = True
    target: str | None = None


class MemoryFileSystem:
    def __init__(self) -> None:
        self._nodes: dict[str, _Node] = {"/": _Node("dir")}
        self._children: dict[str, set[str]] = {"/": set()}

    def add_dir(self, path: str, *, readable: bool = True) -> str:
        normalized = _normalize(path)
        self._ensure_parents(normalized)
        existing = self._nodes.get(normalized)
        if existing is not None and existing.kind == "dir":
            existing.readable = readable
            return normalized
        self._insert(normalized, _Node("dir", readable=readable))
        self._children.setdefault(normalized, set())
        return normalized

    def add_file(self, path: str, size: int = 0, *, readable: bool = True) -> str:
        normalized = _normalize(path)
        self._ensure_parents(normalized)
        self._insert(normalized, _Node("file", size=size, readable=readable))
        return normalized

    def add_special(self, path: str) -> str:
        normalized = _normalize(path)
        self._ensure_parents(normalized)
        self._insert(normalized, _Node("special"))
        return normalized

    def add_symlink(self, path: str, target: str) -> str:
        normalized = _normalize(path)
        self._ensure_parents(normalized)
        self._insert(normalized, _Node("link", target=_normalize(target)))
        return normalized

    def remove(self, path: str) -> None:
        normalized = _normalize(path)
        for child in sorted(self._children.get(normalized, set())):
            self.remove(posixpath.join(normalized, child))
        self._nodes.pop(normalized, None)
        self._children.pop(normalized, None)
        parent, name = posixpath.split(normalized)
        self._children.get(parent, set()).discard(name)

    # FileSystem protocol -------------------------------------------------

    def list_dir(self, path: str) -> list[str]:
        canonical = self.canonicalize(path)
        node = self._nodes.get(canonical)
        if node is None:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", path)
        if node.kind != "dir":
            raise NotADirectoryError(errno.ENOTDIR, "Not a directory", path)
        if not node.readable:
            raise PermissionError(errno.EACCES, "Permission denied", path)
        return sorted(self._children.get(canonical, set()))

    def stat(self, path: str) -> EntryStat:
        node = self._nodes.get(self.canonicalize(path))
        if node is None or node.kind == "link":
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", path)
        return EntryStat(is_dir=node.kind == "dir", is_file=node.kind == "file", size=node.size)

    def canonicalize(self, path: str) -> str:
        return self._resolve(_normalize(path), _MAX_SYMLINK_HOPS)

    def is_symlink(self, path: str) -> bool:
        normalized = _normalize(path)
        if normalized == "/":
            return False
        parent, name = posixpath.split(normalized)
        node = self._nodes.get(posixpath.join(self.canonicalize(parent), name))
        return node is not None and node.kind == "link"

    def is_readable(self, path: str) -> bool:
        node = self._nodes.get(self.canonicalize(path))
        return node is not None and node.kind != "link" and node.readable

    def is_dir(self, path: str) -> bool:
        node = self._nodes.get(self.canonicalize(path))
        return node is not None and node.kind == "dir"

    # internals -----------------------------------------------------------

    def _resolve(self, path: str, hops: int) -> str:
        parts = [part for part in path.split("/") if part]
        current = "/"
        for index, part in enumerate(parts):
            candidate = posixpath.join(current, part)
            node = self._nodes.get(candidate)
            if node is not None and node.kind == "link" and node.target is not None:
                if hops <= 0:
                    # Loop: give up and report the path unresolved.
                    return path
                rest = "/".join(parts[index + 1 :])
                rebased = posixpath.join(node.target, rest) if rest else node.target
                return self._resolve(_normalize(rebased), hops - 1)
            current = candidate
        return current

    def _ensure_parents(self, path: str) -> None:
        parent = posixpath.dirname(path)
        if parent != path and parent not in self._nodes:
            self.add_dir(parent)

    def _insert(self, path: str, node: _Node) -> None:
        if path == "/":
            raise ValueError("cannot replace the root directory")
        self._nodes[path] = node
        parent, name = posixpath.split(path)
        self._children.setdefault(parent, set()).add(name)


def _normalize(path: str) -> str:
    if not path.startswith("/"):
        raise ValueError(f"path must be absolute: {path!r}")
    return posixpath.normpath(path).replace("//", "/")


__all__ = ["MemoryFileSystem"]
