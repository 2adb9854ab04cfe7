"""Command-line interface router for server-sweep."""

from __future__ import annotations

import argparse
import json
import sys
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass

from server_sweep.config.loader import ConfigLoadError, SweepSettings, load_settings
from server_sweep.control_plane.budgets import TimeBudgetGovernor
from server_sweep.control_plane.liveness import StoreLivenessProvider
from server_sweep.discovery.engine import DiscoveryEngine, DiscoveryNotCompleteError
from server_sweep.domain.state import RunStatus
from server_sweep.observability.logging import correlation_scope, setup_logging, shutdown_logging
from server_sweep.persistence.state_store import SQLiteStateStore, StateStoreBusyError
from server_sweep.ui.render import CLIRenderer, create_renderer
from server_sweep.utils.fs import atomic_write


class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class _Session:
    settings: SweepSettings
    store: SQLiteStateStore
    engine: DiscoveryEngine


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="server-sweep",
        description=(
            "server-sweep — resumable discovery of server files outside the protected root.\n\n"
            "Common workflows:\n"
            "  server-sweep start                     Begin a new discovery scan\n"
            "  server-sweep continue                  Resume within the time budget\n"
            "  server-sweep status                    Show progress\n"
            "  server-sweep result --json             Dump discovered paths\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML settings (default: ./server-sweep.toml if present).",
    )
    common.add_argument(
        "--protected-root",
        default=None,
        help="Protected root directory; its parent becomes the home root.",
    )
    common.add_argument(
        "--state-db",
        default=None,
        help="SQLite checkpoint database path.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # start ---------------------------------------------------------------
    start_parser = subparsers.add_parser(
        "start",
        parents=[common],
        help="Discard any previous scan and start a new one",
        description=(
            "Reset the checkpoint, mark the scan as running and run the first\n"
            "time-bounded invocation.\n\n"
            "Examples:\n"
            "  server-sweep start --protected-root /home/site/public_html\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    start_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    start_parser.set_defaults(handler=_cmd_start)

    # continue ------------------------------------------------------------
    continue_parser = subparsers.add_parser(
        "continue",
        parents=[common],
        help="Resume discovery from the last checkpoint",
        description=(
            "Run one more invocation within the host execution-time budget.\n\n"
            "Examples:\n"
            "  server-sweep continue\n"
            "  server-sweep continue --until-complete\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    continue_parser.add_argument(
        "--until-complete",
        action="store_true",
        default=False,
        help="Ignore the time budget and run until the scan completes or is cancelled.",
    )
    continue_parser.add_argument(
        "--json", action="store_true", help="Emit deterministic JSON output"
    )
    continue_parser.set_defaults(handler=_cmd_continue)

    # status --------------------------------------------------------------
    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Show discovery progress",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    status_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    status_parser.set_defaults(handler=_cmd_status)

    # result --------------------------------------------------------------
    result_parser = subparsers.add_parser(
        "result",
        parents=[common],
        help="Print discovered paths (exit 1 while incomplete)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    result_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    result_parser.add_argument(
        "--output",
        default=None,
        help="Write one path per line to this file (replaced atomically).",
    )
    result_parser.set_defaults(handler=_cmd_result)

    # cancel --------------------------------------------------------------
    cancel_parser = subparsers.add_parser(
        "cancel",
        parents=[common],
        help="Request cooperative cancellation of the running scan",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    cancel_parser.set_defaults(handler=_cmd_cancel)

    # reset ---------------------------------------------------------------
    reset_parser = subparsers.add_parser(
        "reset",
        parents=[common],
        help="Discard the checkpoint without starting a new scan",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    reset_parser.set_defaults(handler=_cmd_reset)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective settings and discovery policy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_start(args: argparse.Namespace) -> int:
    with _session(args) as session:
        try:
            session.engine.reset()
        except StateStoreBusyError as exc:
            raise CLIError("a discovery invocation is already running", exit_code=1) from exc
        session.store.set_run_status(RunStatus.RUNNING)
        status = session.engine.continue_discovery(session.settings.build_policy())
        return _emit_status(args, status.to_dict(), RunStatus.RUNNING)


def _cmd_continue(args: argparse.Namespace) -> int:
    with _session(args) as session:
        run_status = session.store.get_run_status()
        governor = TimeBudgetGovernor.unbounded() if _flag(args, "until_complete") else None
        status = session.engine.continue_discovery(
            session.settings.build_policy(), governor=governor
        )
        code = _emit_status(args, status.to_dict(), run_status)
        if run_status is not RunStatus.RUNNING and not _flag(args, "json"):
            _get_renderer(args).next_steps(["server-sweep start"])
        return code


def _cmd_status(args: argparse.Namespace) -> int:
    with _session(args) as session:
        status = session.engine.get_status()
        return _emit_status(args, status.to_dict(), session.store.get_run_status())


def _cmd_result(args: argparse.Namespace) -> int:
    with _session(args) as session:
        try:
            files = session.engine.get_result()
        except DiscoveryNotCompleteError as exc:
            raise CLIError(str(exc), exit_code=1) from exc

    output = getattr(args, "output", None)
    if output:
        try:
            atomic_write(output, "".join(f"{path}\n" for path in files))
        except OSError as exc:
            raise CLIError(f"cannot write result file {output}: {exc}", exit_code=1) from exc

    if _flag(args, "json"):
        _emit_json({"command": "result", "count": len(files), "files": files})
        return 0
    _get_renderer(args).items(files)
    return 0


def _cmd_cancel(args: argparse.Namespace) -> int:
    with _session(args) as session:
        session.store.set_run_status(RunStatus.CANCELLED)
    _get_renderer(args).text(
        "Cancellation requested; the running invocation stops at its next check."
    )
    return 0


def _cmd_reset(args: argparse.Namespace) -> int:
    with _session(args) as session:
        try:
            session.engine.reset()
        except StateStoreBusyError as exc:
            raise CLIError("a discovery invocation is already running", exit_code=1) from exc
        session.store.set_run_status(RunStatus.IDLE)
    _get_renderer(args).text("Discovery state discarded.")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    payload: dict[str, object] = {
        "command": "config",
        "settings": settings.to_dict(),
        "policy": settings.build_policy().to_dict(),
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    renderer.heading("Effective settings")
    renderer.text(json.dumps(payload["settings"], indent=2, sort_keys=True, ensure_ascii=False))
    renderer.heading("Discovery policy")
    renderer.text(json.dumps(payload["policy"], indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session(args: argparse.Namespace) -> Iterator[_Session]:
    settings = _load_settings(args)
    if settings.protected_root is None:
        raise CLIError(
            "protected root is not configured (use --protected-root or [paths] protected_root)",
            exit_code=2,
        )

    handle = setup_logging(
        {
            "log_level": settings.log_level,
            "log_dir": settings.log_dir,
            "log_to_stdout": settings.log_to_stdout,
        }
    )
    try:
        with correlation_scope(invocation_id=uuid.uuid4().hex, command=str(args.command)):
            store = SQLiteStateStore(settings.state_db)
            engine = DiscoveryEngine(
                settings.protected_root,
                store,
                liveness=StoreLivenessProvider(store),
            )
            yield _Session(settings=settings, store=store, engine=engine)
    finally:
        shutdown_logging(handle)


def _load_settings(args: argparse.Namespace) -> SweepSettings:
    overrides = {
        "paths.protected_root": getattr(args, "protected_root", None),
        "paths.state_db": getattr(args, "state_db", None),
    }
    try:
        return load_settings(getattr(args, "config_path", None), cli_overrides=overrides)
    except ConfigLoadError as exc:
        raise CLIError(str(exc), exit_code=2) from exc


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_status(
    args: argparse.Namespace,
    status: Mapping[str, object],
    run_status: RunStatus,
) -> int:
    if _flag(args, "json"):
        _emit_json({"command": str(args.command), "run_status": run_status.value, **status})
        return 0

    renderer = _get_renderer(args)
    renderer.heading(str(status["label"]))
    if renderer.verbose:
        renderer.kv("Phase", status["phase"])
        renderer.kv("Run status", run_status.value)
        renderer.kv("Skipped", status["skipped"])
    return 0


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "main", "run_cli"]
