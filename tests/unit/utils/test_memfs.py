from __future__ import annotations

import pytest

from server_sweep.utils.memfs import MemoryFileSystem


def _tree() -> MemoryFileSystem:
    fs = MemoryFileSystem()
    fs.add_file("/home/site/tmp/x.php", 12)
    fs.add_dir("/home/site/locked", readable=False)
    fs.add_special("/home/site/fifo")
    fs.add_symlink("/home/site/link", "/home/site/tmp")
    fs.add_symlink("/home/site/dangling", "/home/site/absent")
    return fs


@pytest.mark.unit
def test_builders_create_parents_and_sorted_listings() -> None:
    fs = _tree()

    assert fs.list_dir("/home") == ["site"]
    assert fs.list_dir("/home/site") == ["dangling", "fifo", "link", "locked", "tmp"]
    assert fs.list_dir("/home/site/link/") == ["x.php"]


@pytest.mark.unit
def test_stat_follows_links() -> None:
    fs = _tree()

    assert fs.stat("/home/site/tmp/x.php").size == 12
    assert fs.stat("/home/site/link").is_dir
    special = fs.stat("/home/site/fifo")
    assert not special.is_dir and not special.is_file
    with pytest.raises(FileNotFoundError):
        fs.stat("/home/site/dangling")


@pytest.mark.unit
def test_canonicalize_resolves_components() -> None:
    fs = _tree()
    fs.add_symlink("/home/site/hop", "/home/site/link")

    assert fs.canonicalize("/home/site/hop/x.php") == "/home/site/tmp/x.php"
    assert fs.canonicalize("/home/site/tmp/../tmp/x.php") == "/home/site/tmp/x.php"
    assert fs.canonicalize("/home/site/dangling") == "/home/site/absent"


@pytest.mark.unit
def test_symlink_loop_is_returned_unresolved() -> None:
    fs = MemoryFileSystem()
    fs.add_symlink("/home/site/a", "/home/site/b")
    fs.add_symlink("/home/site/b", "/home/site/a")

    assert fs.canonicalize("/home/site/a") in {"/home/site/a", "/home/site/b"}
    assert fs.is_symlink("/home/site/a")


@pytest.mark.unit
def test_listing_errors_match_os_semantics() -> None:
    fs = _tree()

    with pytest.raises(FileNotFoundError):
        fs.list_dir("/home/site/absent")
    with pytest.raises(NotADirectoryError):
        fs.list_dir("/home/site/tmp/x.php")
    with pytest.raises(PermissionError):
        fs.list_dir("/home/site/locked")


@pytest.mark.unit
def test_symlink_and_readability_queries() -> None:
    fs = _tree()
    fs.add_file("/home/site/secret.php", readable=False)

    assert fs.is_symlink("/home/site/link")
    assert not fs.is_symlink("/home/site/tmp")
    assert not fs.is_symlink("/")
    assert fs.is_dir("/home/site/link")
    assert not fs.is_dir("/home/site/fifo")
    assert fs.is_readable("/home/site/tmp/x.php")
    assert not fs.is_readable("/home/site/secret.php")


@pytest.mark.unit
def test_remove_drops_subtree() -> None:
    fs = _tree()

    fs.remove("/home/site/tmp")

    assert "tmp" not in fs.list_dir("/home/site")
    assert not fs.is_dir("/home/site/link")


@pytest.mark.unit
def test_relative_paths_are_rejected() -> None:
    with pytest.raises(ValueError, match="absolute"):
        MemoryFileSystem().add_file("relative/x.php")
