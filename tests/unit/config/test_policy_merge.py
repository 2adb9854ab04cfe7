"""Discovery policy defaults, coercion and clamping."""

from __future__ import annotations

import pytest

from server_sweep.config.policy import (
    MAX_MAX_FILES,
    MIN_MAX_FILES,
    PolicyConfig,
    default_max_files,
    defaults,
    host_time_ceiling,
    merge,
)
from server_sweep.constants import DEFAULT_FORBIDDEN_PATH_PREFIXES

_MIB = 1024 * 1024


@pytest.mark.unit
@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, 30),
        ("", 30),
        ("0", 30),
        ("-5", 30),
        ("abc", 30),
        ("120", 120),
        (" 45 ", 45),
    ],
)
def test_host_time_ceiling_falls_back_to_thirty_seconds(raw: str | None, expected: int) -> None:
    environ = {} if raw is None else {"SWEEP_MAX_EXECUTION_TIME": raw}
    assert host_time_ceiling(environ) == expected


@pytest.mark.unit
def test_default_file_budget_scales_with_ceiling() -> None:
    assert default_max_files(10) == 15_000
    assert default_max_files(30) == 15_000
    assert default_max_files(60) == 30_000
    assert default_max_files(10_000) == 100_000

    assert defaults(120).max_files == 60_000
    assert defaults(120).time_ceiling_seconds == 120
    assert defaults(0).time_ceiling_seconds == 30


@pytest.mark.unit
def test_defaults_are_disabled_and_carry_builtin_forbidden_prefixes() -> None:
    policy = defaults(30)

    assert policy.enabled is False
    assert policy.forbidden_path_prefixes == frozenset(DEFAULT_FORBIDDEN_PATH_PREFIXES)
    assert policy.max_file_size_bytes == 100 * _MIB
    assert policy.chunk_size == 60
    assert policy.aggressive_mode is True
    assert policy.ui_mode == "basic"


@pytest.mark.unit
def test_merge_without_settings_returns_base_unchanged() -> None:
    base = defaults(30)
    assert merge(None, base=base) is base
    assert merge({}, base=base) is base
    assert merge({"unknown_key": 1}, base=base) is base


@pytest.mark.unit
def test_merge_coerces_booleans_and_enums() -> None:
    base = defaults(30)

    assert merge({"enabled": "yes"}, base=base).enabled is True
    assert merge({"enabled": "off"}, base=base).enabled is False
    assert merge({"enabled": 1}, base=base).enabled is True
    assert merge({"aggressive_mode": "0"}, base=base).aggressive_mode is False
    assert merge({"ui_mode": "expert"}, base=base).ui_mode == "expert"
    assert merge({"ui_mode": "hacker"}, base=base).ui_mode == "basic"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (5, MIN_MAX_FILES),
        ("999999", MAX_MAX_FILES),
        ("2500", 2500),
        (2500.9, 2500),
        ("not-a-number", MIN_MAX_FILES),
        (float("nan"), MIN_MAX_FILES),
        ("inf", MIN_MAX_FILES),
        ("-inf", MIN_MAX_FILES),
        ("1e400", MIN_MAX_FILES),
    ],
)
def test_merge_clamps_max_files(raw: object, expected: int) -> None:
    assert merge({"max_files": raw}, base=defaults(30)).max_files == expected


@pytest.mark.unit
def test_merge_converts_size_units() -> None:
    policy = merge(
        {"max_file_size_mb": "2", "exception_max_file_size_kb": 10, "max_depth": 0},
        base=defaults(30),
    )

    assert policy.max_file_size_bytes == 2 * _MIB
    assert policy.exception_max_file_size_bytes == 10 * 1024
    assert policy.max_depth == 1


@pytest.mark.unit
def test_operator_forbidden_paths_extend_builtin_set() -> None:
    policy = merge(
        {"forbidden_paths": ["/home/site/.trash/", "relative/path", 5, "", "/bad\x00path"]},
        base=defaults(30),
    )

    assert "/home/site/.trash" in policy.forbidden_path_prefixes
    assert frozenset(DEFAULT_FORBIDDEN_PATH_PREFIXES) <= policy.forbidden_path_prefixes
    assert "relative/path" not in policy.forbidden_path_prefixes
    assert not any("\x00" in prefix for prefix in policy.forbidden_path_prefixes)


@pytest.mark.unit
def test_exception_allowed_paths_replace_defaults_when_non_empty() -> None:
    base = defaults(30)

    replaced = merge({"exception_allowed_paths": ["/.cagefs/tmp"]}, base=base)
    kept = merge({"exception_allowed_paths": []}, base=base)

    assert replaced.exception_allowed_subpaths == frozenset({"/.cagefs/tmp"})
    assert kept.exception_allowed_subpaths == base.exception_allowed_subpaths


@pytest.mark.unit
def test_direct_construction_is_normalized() -> None:
    policy = PolicyConfig(max_files=10, ui_mode="nope", safety_margin_seconds=-3)

    assert policy.max_files == MIN_MAX_FILES
    assert policy.ui_mode == "basic"
    assert policy.safety_margin_seconds == 0


@pytest.mark.unit
def test_to_dict_is_deterministic() -> None:
    payload = PolicyConfig(forbidden_path_prefixes=frozenset({"/b", "/a"})).to_dict()

    assert payload["forbidden_path_prefixes"] == ["/a", "/b"]
    assert payload["max_files"] == 10_000
