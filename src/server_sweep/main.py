"""Executable CLI entrypoint for ``server_sweep``.

Failures escaping the command router are mapped onto the exit-code contract by
walking the exception chain against :func:`_exit_routes`; anything unrouted is
an internal error and prints its traceback.
"""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    INCOMPLETE = 1
    CONFIG_ERROR = 2
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m server_sweep`` and the console script."""

    try:
        from server_sweep.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except Exception as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = _route_exception(exc)
        if exit_code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            _write_stderr(f"error: {str(exc).strip() or type(exc).__name__}")
        return int(exit_code)


def _exit_routes() -> tuple[tuple[type[BaseException], ExitCode], ...]:
    from server_sweep.config.loader import ConfigLoadError
    from server_sweep.discovery.engine import DiscoveryNotCompleteError
    from server_sweep.persistence.state_store import StateStoreBusyError

    return (
        (ConfigLoadError, ExitCode.CONFIG_ERROR),
        (DiscoveryNotCompleteError, ExitCode.INCOMPLETE),
        # another invocation holds the scan lease
        (StateStoreBusyError, ExitCode.INCOMPLETE),
    )


def _route_exception(exc: BaseException) -> ExitCode:
    routes = _exit_routes()
    for item in _exception_chain(exc):
        for error_type, exit_code in routes:
            if isinstance(item, error_type):
                return exit_code
    return ExitCode.INTERNAL_ERROR


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and its explicit or implicit causes, each once."""

    visited: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in visited:
        visited.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif current.__suppress_context__:
            current = None
        else:
            current = current.__context__


def _normalize_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int) and raw_code in {int(code) for code in ExitCode}:
        return raw_code
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint"]
