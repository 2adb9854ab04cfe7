"""
server-sweep — unit tests for the settings loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic settings loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Env var mapping and type coercion failures.
- Path normalization relative to the config file.
- Hand-off of the raw ``[policy]`` table to policy merging.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from server_sweep.config.loader import ConfigLoadError, load_settings


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.mark.unit
def test_loader_defaults_without_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    settings = load_settings(environ={})

    assert settings.config_path == (tmp_path / "server-sweep.toml").resolve()
    assert settings.protected_root is None
    assert settings.state_db == tmp_path.resolve() / "state" / "sweep.sqlite"
    assert settings.time_ceiling_seconds == 30
    assert settings.safety_margin_seconds == 8
    assert settings.log_level == "INFO"
    assert settings.log_to_stdout is False
    assert settings.policy_settings == {}


@pytest.mark.unit
def test_loader_precedence_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "server-sweep.toml"
    _write_config(
        config_path,
        """
[paths]
protected_root = "site/public_html"
state_db = "db/state.sqlite"

[host]
max_execution_time = 60

[observability]
log_level = "debug"

[policy]
enabled = true
max_files = 2000
forbidden_paths = ["/home/site/.trash"]
""".strip(),
    )
    environ = {
        "SWEEP_HOST_MAX_EXECUTION_TIME": "90",
        "SWEEP_POLICY_MAX_FILES": "3000",
        "SWEEP_PATHS_STATE_DB": "/var/lib/sweep/env.sqlite",
    }

    settings = load_settings(
        config_path,
        environ=environ,
        cli_overrides={"paths.state_db": "/srv/cli.sqlite", "paths.protected_root": None},
    )

    assert settings.protected_root == tmp_path.resolve() / "conf" / "site" / "public_html"
    assert settings.state_db == Path("/srv/cli.sqlite")
    assert settings.time_ceiling_seconds == 90
    assert settings.log_level == "DEBUG"
    assert settings.policy_settings["max_files"] == 3000
    assert settings.policy_settings["forbidden_paths"] == ["/home/site/.trash"]

    policy = settings.build_policy()
    assert policy.enabled is True
    assert policy.max_files == 3000
    assert policy.time_ceiling_seconds == 90
    assert "/home/site/.trash" in policy.forbidden_path_prefixes


@pytest.mark.unit
def test_host_ceiling_env_feeds_default(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    settings = load_settings(environ={"SWEEP_MAX_EXECUTION_TIME": "300"})

    assert settings.time_ceiling_seconds == 300
    assert settings.build_policy().max_files == 100_000


@pytest.mark.unit
def test_explicit_missing_config_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_settings(tmp_path / "absent.toml", environ={})


@pytest.mark.unit
def test_invalid_toml_is_reported(tmp_path: Path) -> None:
    config_path = tmp_path / "server-sweep.toml"
    _write_config(config_path, "[paths\nprotected_root = 1")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_settings(config_path, environ={})


@pytest.mark.unit
def test_section_must_be_a_table(tmp_path: Path) -> None:
    config_path = tmp_path / "server-sweep.toml"
    _write_config(config_path, 'policy = "enabled"')

    with pytest.raises(ConfigLoadError, match=r"\[policy\] must be a table"):
        load_settings(config_path, environ={})


@pytest.mark.unit
@pytest.mark.parametrize(
    ("env_name", "raw", "message"),
    [
        ("SWEEP_HOST_MAX_EXECUTION_TIME", "soon", "must be an integer"),
        ("SWEEP_POLICY_ENABLED", "maybe", "must be a boolean"),
        ("SWEEP_OBSERVABILITY_LOG_TO_STDOUT", "loud", "must be a boolean"),
    ],
)
def test_env_coercion_errors(tmp_path: Path, env_name: str, raw: str, message: str) -> None:
    config_path = tmp_path / "server-sweep.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match=message):
        load_settings(config_path, environ={env_name: raw})


@pytest.mark.unit
def test_non_positive_ceiling_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "server-sweep.toml"
    _write_config(config_path, "[host]\nmax_execution_time = 0\n")

    with pytest.raises(ConfigLoadError, match="max_execution_time must be > 0"):
        load_settings(config_path, environ={})


@pytest.mark.unit
def test_invalid_policy_values_are_clamped_not_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "server-sweep.toml"
    _write_config(config_path, '[policy]\nmax_files = -4\nui_mode = "root"\n')

    policy = load_settings(config_path, environ={}).build_policy()

    assert policy.max_files == 500
    assert policy.ui_mode == "basic"


@pytest.mark.unit
@pytest.mark.parametrize("raw", ['"inf"', '"1e400"', '"-inf"'])
def test_non_finite_max_files_falls_back_to_minimum(tmp_path: Path, raw: str) -> None:
    config_path = tmp_path / "server-sweep.toml"
    _write_config(config_path, f"[policy]\nmax_files = {raw}\n")

    assert load_settings(config_path, environ={}).build_policy().max_files == 500


@pytest.mark.unit
def test_to_dict_round_trips_paths_as_posix(tmp_path: Path) -> None:
    config_path = tmp_path / "server-sweep.toml"
    _write_config(config_path, '[paths]\nprotected_root = "/home/site/public_html"\n')

    payload = load_settings(config_path, environ={}).to_dict()

    assert payload["paths"] == {
        "protected_root": "/home/site/public_html",
        "state_db": (tmp_path.resolve() / "state" / "sweep.sqlite").as_posix(),
    }
    assert payload["host"] == {"max_execution_time": 30, "safety_margin_seconds": 8}
