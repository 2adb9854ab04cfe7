"""
server-sweep — checkpoint persistence

File: src/server_sweep/persistence/state_store.py

Purpose
- Durable key-value storage for the discovery checkpoint, the operator run
  status and the single-writer scan lease.

Functional requirements
- ``save_state`` followed by ``load_state`` must round-trip exactly.
- A missing checkpoint loads as a fresh ``NONE`` state.
- Lease acquisition is atomic so overlapping triggers cannot both mutate state.

Non-functional requirements
- SQLite-first (WAL, bounded busy retries, short-lived connections); an
  in-memory store with the same contract for tests and embedding.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Final, Protocol

import structlog

from server_sweep.constants import SCAN_LEASE_TTL_SECONDS, STATE_DB_SCHEMA_VERSION
from server_sweep.domain.state import DiscoveryState, RunStatus, utc_now_iso

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
Clock = Callable[[], float]

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

STATE_KEY: Final[str] = "discovery_state"
RUN_STATUS_KEY: Final[str] = "run_status"

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = ("database is locked", "database is busy")

_SCHEMA_STATEMENTS: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS schema_versions (
        version INTEGER PRIMARY KEY CHECK (version > 0),
        applied_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scan_lease (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        owner TEXT NOT NULL,
        expires_at REAL NOT NULL
    )
    """,
)


class StateStoreError(RuntimeError):
    """Base error for checkpoint persistence failures."""


class StateStoreBusyError(StateStoreError):
    """Raised when bounded busy retries are exhausted."""


class StateStore(Protocol):
    """Persistence contract consumed by the discovery engine."""

    def load_state(self) -> DiscoveryState: ...

    def save_state(self, state: DiscoveryState) -> None: ...

    def clear_state(self) -> None: ...

    def get_run_status(self) -> RunStatus: ...

    def set_run_status(self, status: RunStatus) -> None: ...

    def try_acquire_lease(self, owner: str, ttl_seconds: float = SCAN_LEASE_TTL_SECONDS) -> bool: ...

    def release_lease(self, owner: str) -> None: ...


class InMemoryStateStore:
    """Thread-safe in-process store; checkpoints are kept as serialized JSON."""

    def __init__(self, *, clock: Clock = time.time) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._state_json: str | None = None
        self._run_status = RunStatus.IDLE
        self._lease: tuple[str, float] | None = None

    def load_state(self) -> DiscoveryState:
        with self._lock:
            raw = self._state_json
        if raw is None:
            return DiscoveryState()
        return DiscoveryState.from_json(raw)

    def save_state(self, state: DiscoveryState) -> None:
        payload = state.to_json()
        with self._lock:
            self._state_json = payload

    def clear_state(self) -> None:
        with self._lock:
            self._state_json = None

    def get_run_status(self) -> RunStatus:
        with self._lock:
            return self._run_status

    def set_run_status(self, status: RunStatus) -> None:
        with self._lock:
            self._run_status = RunStatus(status)

    def try_acquire_lease(self, owner: str, ttl_seconds: float = SCAN_LEASE_TTL_SECONDS) -> bool:
        now = self._clock()
        with self._lock:
            if self._lease is not None:
                holder, expires_at = self._lease
                if holder != owner and expires_at > now:
                    return False
            self._lease = (owner, now + ttl_seconds)
            return True

    def release_lease(self, owner: str) -> None:
        with self._lock:
            if self._lease is not None and self._lease[0] == owner:
                self._lease = None


class SQLiteStateStore:
    """SQLite-backed key-value checkpoint store."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
        clock: Clock = time.time,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        if busy_retry_backoff_ms < 0:
            raise ValueError("busy_retry_backoff_ms must be >= 0")

        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._clock = clock
        self._migrated = False
        self._logger = structlog.get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    def migrate(self) -> int:
        """Create tables idempotently and return the schema version."""

        with self.transaction() as conn:
            for statement in _SCHEMA_STATEMENTS:
                self._execute(conn, statement, (), operation="create schema")
            self._execute(
                conn,
                "INSERT OR IGNORE INTO schema_versions (version, applied_at) VALUES (?, ?)",
                (STATE_DB_SCHEMA_VERSION, utc_now_iso()),
                operation="record schema version",
            )
            row = self._execute(
                conn, "SELECT MAX(version) FROM schema_versions", (), operation="schema version"
            ).fetchone()
        self._migrated = True
        return int(row[0]) if row is not None and row[0] is not None else 0

    def load_state(self) -> DiscoveryState:
        raw = self._get(STATE_KEY)
        if raw is None:
            return DiscoveryState()
        return DiscoveryState.from_json(raw)

    def save_state(self, state: DiscoveryState) -> None:
        self._put(STATE_KEY, state.to_json())

    def clear_state(self) -> None:
        self._ensure_schema()
        with self.transaction() as conn:
            self._execute(
                conn, "DELETE FROM kv_store WHERE key = ?", (STATE_KEY,), operation="clear state"
            )

    def get_run_status(self) -> RunStatus:
        raw = self._get(RUN_STATUS_KEY)
        if raw is None:
            return RunStatus.IDLE
        try:
            return RunStatus(raw)
        except ValueError:
            self._logger.warning("state_store_unknown_run_status", value=raw)
            return RunStatus.IDLE

    def set_run_status(self, status: RunStatus) -> None:
        self._put(RUN_STATUS_KEY, RunStatus(status).value)

    def try_acquire_lease(self, owner: str, ttl_seconds: float = SCAN_LEASE_TTL_SECONDS) -> bool:
        self._ensure_schema()
        now = self._clock()
        with self.transaction() as conn:
            row = self._execute(
                conn,
                "SELECT owner, expires_at FROM scan_lease WHERE id = 1",
                (),
                operation="read lease",
            ).fetchone()
            if row is not None and row["owner"] != owner and float(row["expires_at"]) > now:
                return False
            self._execute(
                conn,
                """
                INSERT INTO scan_lease (id, owner, expires_at) VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET owner = excluded.owner,
                                              expires_at = excluded.expires_at
                """,
                (owner, now + ttl_seconds),
                operation="acquire lease",
            )
        return True

    def release_lease(self, owner: str) -> None:
        self._ensure_schema()
        with self.transaction() as conn:
            self._execute(
                conn,
                "DELETE FROM scan_lease WHERE id = 1 AND owner = ?",
                (owner,),
                operation="release lease",
            )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements inside one ``BEGIN IMMEDIATE`` transaction."""

        with self.connection() as conn:
            self._execute(conn, "BEGIN IMMEDIATE", (), operation="begin transaction")
            try:
                yield conn
            except Exception:
                self._execute(conn, "ROLLBACK", (), operation="rollback transaction")
                raise
            else:
                self._execute(conn, "COMMIT", (), operation="commit transaction")

    def _ensure_schema(self) -> None:
        if not self._migrated:
            self.migrate()

    def _get(self, key: str) -> str | None:
        self._ensure_schema()
        with self.connection() as conn:
            row = self._execute(
                conn, "SELECT value FROM kv_store WHERE key = ?", (key,), operation=f"read {key}"
            ).fetchone()
        if row is None:
            return None
        return str(row["value"])

    def _put(self, key: str, value: str) -> None:
        self._ensure_schema()
        with self.transaction() as conn:
            self._execute(
                conn,
                """
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = excluded.updated_at
                """,
                (key, value, utc_now_iso()),
                operation=f"write {key}",
            )

    def _execute(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.Error as exc:
                if _is_busy_error(exc) and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                if _is_busy_error(exc):
                    raise StateStoreBusyError(
                        f"{operation} hit SQLITE_BUSY for {self._path} after "
                        f"{self._busy_retry_limit + 1} attempt(s): {exc}"
                    ) from exc
                raise StateStoreError(f"{operation} failed for {self._path}: {exc}") from exc
        raise StateStoreBusyError(f"{operation} exhausted retries unexpectedly")


def _is_busy_error(exc: sqlite3.Error) -> bool:
    message = str(exc).lower()
    return any(fragment in message for fragment in _BUSY_SUBSTRINGS)


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "InMemoryStateStore",
    "SQLiteStateStore",
    "StateStore",
    "StateStoreBusyError",
    "StateStoreError",
]
