"""
server-sweep — CLI smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Drive start/continue/status/result/cancel/reset through the real CLI router
  against a SQLite checkpoint and a real directory tree.
- Verify exit codes, JSON output shape and the JSON-lines log sink.

Notes
- The tree lives under pytest's temp directory, which the built-in forbidden
  prefixes may cover; assertions therefore never depend on a file being
  collected, only on forbidden and protected files never appearing.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

from server_sweep.main import ExitCode, cli_entrypoint

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("SWEEP_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("NO_COLOR", "1")


@pytest.fixture
def site(tmp_path: Path) -> Path:
    root = tmp_path.resolve() / "home" / "site"
    for relative in ("public_html/index.php", "tmp/x.php", ".trash/evil.php"):
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text("<?php", encoding="utf-8")
    return root


@pytest.fixture
def config_path(tmp_path: Path, site: Path) -> Path:
    path = tmp_path / "server-sweep.toml"
    path.write_text(
        "\n".join(
            (
                "[paths]",
                f'protected_root = "{site / "public_html"}"',
                'state_db = "state/sweep.sqlite"',
                "",
                "[observability]",
                'log_dir = "logs"',
                'log_level = "debug"',
                "",
                "[policy]",
                "enabled = true",
                f'forbidden_paths = ["{site / ".trash"}"]',
                "",
            )
        ),
        encoding="utf-8",
    )
    return path


def _run(capsys: pytest.CaptureFixture[str], *args: str) -> tuple[int, str, str]:
    code = cli_entrypoint(list(args))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def _json(out: str) -> dict[str, object]:
    return json.loads(out.strip().splitlines()[-1])


@pytest.mark.integration
def test_start_status_result_lifecycle(
    capsys: pytest.CaptureFixture[str], config_path: Path, site: Path, tmp_path: Path
) -> None:
    config = str(config_path)

    code, out, _ = _run(capsys, "result", "--config", config)
    assert code == ExitCode.INCOMPLETE

    code, out, _ = _run(capsys, "start", "--config", config, "--json")
    assert code == ExitCode.SUCCESS
    started = _json(out)
    assert started["command"] == "start"
    assert started["run_status"] == "running"
    assert started["phase"] == "complete"

    code, out, _ = _run(capsys, "status", "--config", config, "--json")
    assert code == ExitCode.SUCCESS
    status = _json(out)
    assert status["count"] == started["count"]

    output_file = tmp_path / "files.txt"
    code, out, _ = _run(
        capsys, "result", "--config", config, "--json", "--output", str(output_file)
    )
    assert code == ExitCode.SUCCESS
    result = _json(out)
    files = result["files"]
    assert isinstance(files, list)
    assert result["count"] == len(files) == status["count"]
    assert str(site / ".trash" / "evil.php") not in files
    assert str(site / "public_html" / "index.php") not in files
    assert output_file.read_text(encoding="utf-8").splitlines() == files

    log_path = tmp_path / "logs" / "sweep.jsonl"
    events = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    completed = [event for event in events if event["event"] == "discovery_completed"]
    assert completed
    assert completed[0]["command"] == "start"
    assert completed[0]["invocation_id"]


@pytest.mark.integration
def test_cancel_blocks_continue_until_restarted(
    capsys: pytest.CaptureFixture[str], config_path: Path
) -> None:
    config = str(config_path)

    code, _, _ = _run(capsys, "cancel", "--config", config)
    assert code == ExitCode.SUCCESS

    code, out, _ = _run(capsys, "continue", "--config", config)
    assert code == ExitCode.SUCCESS
    assert "External discovery not started" in out
    assert "server-sweep start" in out

    code, out, _ = _run(capsys, "status", "--config", config, "--json")
    assert _json(out)["run_status"] == "cancelled"


@pytest.mark.integration
def test_reset_discards_completed_scan(
    capsys: pytest.CaptureFixture[str], config_path: Path
) -> None:
    config = str(config_path)
    _run(capsys, "start", "--config", config)

    code, out, _ = _run(capsys, "reset", "--config", config)
    assert code == ExitCode.SUCCESS
    assert "Discovery state discarded." in out

    code, out, _ = _run(capsys, "status", "--config", config, "--json")
    payload = _json(out)
    assert payload["phase"] == "none"
    assert payload["run_status"] == "idle"


@pytest.mark.integration
def test_explicit_missing_config_is_a_config_error(
    capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    code, _, err = _run(capsys, "status", "--config", str(tmp_path / "absent.toml"))

    assert code == ExitCode.CONFIG_ERROR
    assert "config file not found" in err


@pytest.mark.integration
def test_disabled_policy_completes_empty(
    capsys: pytest.CaptureFixture[str], site: Path, tmp_path: Path
) -> None:
    empty_config = tmp_path / "empty.toml"
    empty_config.write_text("", encoding="utf-8")
    code, out, _ = _run(
        capsys,
        "start",
        "--protected-root",
        str(site / "public_html"),
        "--state-db",
        str(tmp_path / "disabled.sqlite"),
        "--config",
        str(empty_config),
        "--json",
    )
    assert code == ExitCode.SUCCESS
    payload = _json(out)
    assert payload["phase"] == "complete"
    assert payload["count"] == 0


@pytest.mark.integration
def test_missing_protected_root_is_a_config_error(
    capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    empty_config = tmp_path / "empty.toml"
    empty_config.write_text("", encoding="utf-8")

    code, _, err = _run(capsys, "status", "--config", str(empty_config))

    assert code == ExitCode.CONFIG_ERROR
    assert "protected root is not configured" in err


@pytest.mark.integration
def test_config_command_reports_policy(
    capsys: pytest.CaptureFixture[str], config_path: Path, site: Path
) -> None:
    code, out, _ = _run(capsys, "config", "--config", str(config_path), "--json")

    assert code == ExitCode.SUCCESS
    payload = _json(out)
    policy = payload["policy"]
    assert isinstance(policy, dict)
    assert policy["enabled"] is True
    assert str(site / ".trash") in policy["forbidden_path_prefixes"]
    assert "/proc" in policy["forbidden_path_prefixes"]


@pytest.mark.integration
def test_python_module_entrypoint(tmp_path: Path, site: Path) -> None:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    env["PYTHONPATH"] = (
        str(SRC_PATH) if not existing_pythonpath else f"{SRC_PATH}:{existing_pythonpath}"
    )
    completed = subprocess.run(
        [
            sys.executable,
            "-m",
            "server_sweep",
            "status",
            "--protected-root",
            str(site / "public_html"),
            "--state-db",
            str(tmp_path / "module.sqlite"),
            "--json",
        ],
        cwd=tmp_path,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )

    assert completed.returncode == 0, completed.stderr
    assert _json(completed.stdout)["phase"] == "none"
