"""
server-sweep — discovery over a real directory tree

File: tests/integration/test_local_filesystem_discovery.py

Purpose
- Exercise the host filesystem adapter and the SQLite checkpoint store
  together, including symlinks, oversized files and self-exclusion.

Notes
- pytest places ``tmp_path`` under the system temp directory, which is a
  built-in forbidden prefix, so these tests pass an explicit forbidden set.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from server_sweep.config.policy import PolicyConfig
from server_sweep.control_plane.budgets import TimeBudgetGovernor
from server_sweep.discovery.engine import DiscoveryEngine
from server_sweep.domain.state import DiscoveryPhase
from server_sweep.persistence.state_store import SQLiteStateStore

if TYPE_CHECKING:
    from pathlib import Path


class _TickingClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


def _write(path: Path, text: str = "<?php echo 1;") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def home(tmp_path: Path) -> Path:
    root = tmp_path.resolve() / "home" / "site"
    _write(root / "public_html" / "index.php")
    _write(root / "tmp" / "x.php")
    _write(root / "keep.php")
    _write(root / ".trash" / "evil.php")
    _write(root / "server-sweep" / "backup.php")
    _write(root / "big.bin", "x" * 64)
    try:
        os.symlink(root / "tmp", root / "link")
    except (NotImplementedError, OSError) as exc:
        pytest.skip(f"symlinks are not supported in this environment: {exc}")
    return root


def _policy(home: Path) -> PolicyConfig:
    return PolicyConfig(
        enabled=True,
        max_file_size_bytes=32,
        forbidden_path_prefixes=frozenset({str(home / ".trash")}),
    )


@pytest.mark.integration
def test_local_tree_is_discovered_within_boundaries(home: Path, tmp_path: Path) -> None:
    store = SQLiteStateStore(tmp_path / "state" / "sweep.sqlite")
    engine = DiscoveryEngine(home / "public_html", store, priority_subpaths=("tmp/",))

    status = engine.continue_discovery(_policy(home), governor=TimeBudgetGovernor.unbounded())

    assert status.is_complete
    assert engine.get_result() == [str(home / "tmp" / "x.php"), str(home / "keep.php")]
    # link, .trash and server-sweep; oversized files are not counted
    assert status.skipped == 3
    assert engine.home_root == str(home)


@pytest.mark.integration
def test_checkpoints_survive_fresh_engine_instances(home: Path, tmp_path: Path) -> None:
    db_path = tmp_path / "state" / "sweep.sqlite"
    expected = [str(home / "tmp" / "x.php"), str(home / "keep.php")]

    for _ in range(20):
        engine = DiscoveryEngine(
            home / "public_html",
            SQLiteStateStore(db_path),
            priority_subpaths=("tmp/",),
        )
        status = engine.continue_discovery(
            _policy(home), governor=TimeBudgetGovernor(2, 0, clock=_TickingClock())
        )
        if status.is_complete:
            break
        assert status.phase is DiscoveryPhase.DISCOVERY

    assert engine.get_result() == expected
