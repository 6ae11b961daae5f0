"""
SQLite storage backend for the catalog.

The catalog lives in an in-memory SQLite database owned by a single `aiosqlite`
connection and is written to one snapshot file on disk after each mutating
batch (see `snapshot.py`).

Concurrency:
- An `AsyncRWLock` guards the connection: queries share it, writes and
  transactions hold it exclusively. Persisting happens while the write lock
  is still held, so no interleaved writer can be lost.
- Statements issued inside an open transaction are routed through it by a
  context-local token and never re-acquire the lock.

Critical guarantee:
- Statement helpers never raise to callers; they return `Result(...)`.
- `atransaction` rolls back and re-raises when its block raises.
"""

from __future__ import annotations

import asyncio
import contextvars
import sqlite3
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from ...shared import CatalogCorruptError, ErrorCode, Result, get_logger, log_success, timer
from . import snapshot
from .rwlock import AsyncRWLock
from .transaction_manager import (
    begin_stmt_for_mode,
    cursor_write_result,
    integrity_error_result,
    is_write_sql,
    rows_to_dicts,
    tx_token as tx_ctx_token,
)

logger = get_logger(__name__)

_TX_TOKEN: contextvars.ContextVar[str | None] = contextvars.ContextVar("lumina_db_tx_token", default=None)


class Sqlite:
    """
    Catalog storage backend.

    Args:
        snapshot_path: Snapshot file; None keeps the catalog purely in memory.
        persist_enabled: When False, `apersist()` is a no-op (previews, tooling).
    """

    def __init__(self, snapshot_path: str | Path | None, *, persist_enabled: bool = True):
        self._snapshot_path = Path(snapshot_path).expanduser() if snapshot_path else None
        self._persist_enabled = bool(persist_enabled)
        self._uri = snapshot.memory_uri()
        self._conn: aiosqlite.Connection | None = None
        self._rwlock = AsyncRWLock()
        self._open_lock = asyncio.Lock()
        self._open_error: Result[bool] | None = None
        self._active_tx: str | None = None
        self._read_only = False
        self._read_only_reason: str | None = None
        self._last_persist_bytes: int | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def snapshot_path(self) -> Path | None:
        return self._snapshot_path

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def read_only_reason(self) -> str | None:
        return self._read_only_reason

    async def aopen(self) -> Result[bool]:
        """
        Open the in-memory catalog and load the snapshot into it.

        A snapshot that cannot be loaded or fails `PRAGMA integrity_check`
        yields `Err(DB_CORRUPT)`; the backend refuses to serve it.
        """
        async with self._open_lock:
            if self._conn is not None:
                return Result.Ok(True)
            if self._open_error is not None:
                return self._open_error
            try:
                await self._open_locked()
            except CatalogCorruptError as exc:
                logger.critical("Refusing to serve corrupt catalog: %s", exc)
                await self._discard_connection()
                self._open_error = Result.Err(ErrorCode.DB_CORRUPT, str(exc))
                return self._open_error
            except (OSError, sqlite3.Error) as exc:
                logger.error("Failed to open catalog: %s", exc)
                await self._discard_connection()
                return Result.Err(ErrorCode.DB_ERROR, f"Failed to open catalog: {exc}")
            return Result.Ok(True)

    async def _open_locked(self) -> None:
        # The aiosqlite connection keeps the shared in-memory database alive.
        conn = await aiosqlite.connect(self._uri, uri=True, isolation_level=None, check_same_thread=False)
        conn.row_factory = aiosqlite.Row
        self._conn = conn

        path = self._snapshot_path
        if path is None:
            logger.info("Opened in-memory catalog (no snapshot file)")
            return

        if path.exists():
            snapshot.remove_stale_tmp(path)
            with timer("snapshot load", logger):
                pages = await asyncio.to_thread(snapshot.load_snapshot, self._uri, path)
            await self._check_integrity()
            log_success(logger, f"Loaded catalog snapshot {path.name} ({pages} pages)")
        else:
            logger.info("No catalog snapshot at %s, starting empty", path)

    async def _check_integrity(self) -> None:
        conn = self._conn
        if conn is None:
            return
        try:
            cursor = await conn.execute("PRAGMA integrity_check")
            rows = await cursor.fetchall()
            await cursor.close()
        except sqlite3.DatabaseError as exc:
            raise CatalogCorruptError(f"Integrity check failed: {exc}") from exc
        verdicts = [str(row[0]) for row in rows or []]
        if verdicts != ["ok"]:
            raise CatalogCorruptError(f"Integrity check failed: {'; '.join(verdicts[:5])}")

    async def _discard_connection(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await conn.close()

    async def _ensure_open(self) -> Result[bool]:
        if self._conn is not None:
            return Result.Ok(True)
        return await self.aopen()

    async def aclose(self) -> None:
        """Close the connection. Unpersisted writes are lost."""
        async with self._rwlock.write():
            await self._discard_connection()

    # ------------------------------------------------------------------
    # Read-only fallback
    # ------------------------------------------------------------------

    def _enter_read_only(self, reason: str) -> None:
        if not self._read_only:
            logger.error("Catalog switched to read-only mode: %s", reason)
        self._read_only = True
        self._read_only_reason = reason

    def _read_only_error(self) -> Result[Any]:
        return Result.Err(
            ErrorCode.READ_ONLY,
            "Catalog is read-only after a persistence failure",
            reason=self._read_only_reason,
        )

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _in_transaction(self) -> bool:
        token = tx_ctx_token(_TX_TOKEN)
        return token is not None and token == self._active_tx

    async def _execute_on_conn(self, query: str, params: tuple | None, fetch: bool) -> Result[Any]:
        conn = self._conn
        if conn is None:
            return Result.Err(ErrorCode.SERVICE_UNAVAILABLE, "Catalog is closed")
        try:
            cursor = await conn.execute(query, params or ())
            try:
                if fetch:
                    return Result.Ok(rows_to_dicts(await cursor.fetchall()))
                return cursor_write_result(cursor)
            finally:
                await cursor.close()
        except sqlite3.IntegrityError as exc:
            logger.warning("Integrity error: %s", exc)
            return integrity_error_result(exc)
        except sqlite3.OperationalError as exc:
            logger.error("Operational error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, f"Operational error: {exc}")
        except (sqlite3.Error, ValueError) as exc:
            logger.error("Database error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def aexecute(self, query: str, params: tuple | None = None, fetch: bool = False) -> Result[Any]:
        """
        Execute one statement.

        Writes outside a transaction are auto-committed but not persisted;
        use `atransaction(persist=True)` for durable writes.
        """
        ready = await self._ensure_open()
        if not ready.ok:
            return ready
        if self._in_transaction():
            return await self._execute_on_conn(query, params, fetch)
        if is_write_sql(query):
            if self._read_only:
                return self._read_only_error()
            async with self._rwlock.write():
                return await self._execute_on_conn(query, params, fetch)
        async with self._rwlock.read():
            return await self._execute_on_conn(query, params, fetch)

    async def aquery(self, sql: str, params: tuple | None = None) -> Result[list[dict[str, Any]]]:
        """Execute a SELECT query and return rows."""
        return await self.aexecute(sql, params, fetch=True)

    async def aexecutemany(self, query: str, params_list: list[tuple]) -> Result[int]:
        """Execute a statement for every parameter tuple; returns the affected row count."""
        ready = await self._ensure_open()
        if not ready.ok:
            return ready  # type: ignore[return-value]
        if not params_list:
            return Result.Ok(0)
        if self._in_transaction():
            return await self._executemany_on_conn(query, params_list)
        if self._read_only:
            return self._read_only_error()
        async with self._rwlock.write():
            return await self._executemany_on_conn(query, params_list)

    async def _executemany_on_conn(self, query: str, params_list: list[tuple]) -> Result[int]:
        conn = self._conn
        if conn is None:
            return Result.Err(ErrorCode.SERVICE_UNAVAILABLE, "Catalog is closed")
        try:
            cursor = await conn.executemany(query, params_list)
            try:
                return Result.Ok(max(0, int(cursor.rowcount or 0)))
            finally:
                await cursor.close()
        except sqlite3.IntegrityError as exc:
            logger.warning("Integrity error: %s", exc)
            return integrity_error_result(exc)
        except (sqlite3.Error, ValueError) as exc:
            logger.error("Database error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def aexecutescript(self, script: str) -> Result[bool]:
        """Run a multi-statement script outside any transaction (DDL)."""
        ready = await self._ensure_open()
        if not ready.ok:
            return ready
        if self._in_transaction():
            return Result.Err(ErrorCode.DB_ERROR, "executescript is not allowed inside a transaction")
        if self._read_only:
            return self._read_only_error()
        async with self._rwlock.write():
            conn = self._conn
            if conn is None:
                return Result.Err(ErrorCode.SERVICE_UNAVAILABLE, "Catalog is closed")
            try:
                await conn.executescript(script)
                return Result.Ok(True)
            except sqlite3.Error as exc:
                logger.error("Script execution failed: %s", exc)
                return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def atable_columns(self, table_name: str) -> Result[list[str]]:
        """Column names of a table from live `PRAGMA table_info`."""
        result = await self.aquery(f"PRAGMA table_info('{table_name}')")
        if not result.ok:
            return Result.Err(result.code, result.error or f"Unable to inspect {table_name}")
        return Result.Ok([row["name"] for row in result.data or []])

    async def aget_meta(self, key: str) -> str | None:
        result = await self.aquery("SELECT value FROM metadata WHERE key = ?", (key,))
        if result.ok and result.data:
            return str(result.data[0]["value"])
        return None

    async def aset_meta(self, key: str, value: Any) -> Result[Any]:
        return await self.aexecute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
            (key, str(value)),
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def _rollback_quietly(self) -> None:
        conn = self._conn
        if conn is None:
            return
        try:
            await conn.rollback()
        except sqlite3.Error as exc:
            logger.error("Rollback failed: %s", exc)

    @asynccontextmanager
    async def atransaction(self, mode: str = "immediate", *, persist: bool = False):
        """
        Async context manager for an all-or-nothing write transaction.

        Yields a `Result` describing the transaction state. If the block
        raises, the transaction is rolled back and the exception propagates.
        A failed commit is reported by flipping the yielded state to an error.
        With `persist=True` the snapshot is written after commit while the
        write lock is still held.

        Nested use joins the outer transaction.
        """
        if self._in_transaction():
            yield Result.Ok(True, joined=True)
            return

        ready = await self._ensure_open()
        if not ready.ok:
            yield Result.Err(ready.code, ready.error or "Catalog unavailable")
            return
        if self._read_only:
            yield self._read_only_error()
            return

        async with self._rwlock.write():
            conn = self._conn
            if conn is None:
                yield Result.Err(ErrorCode.SERVICE_UNAVAILABLE, "Catalog is closed")
                return
            try:
                await conn.execute(begin_stmt_for_mode(mode))
            except sqlite3.Error as exc:
                logger.error("Failed to begin transaction: %s", exc)
                yield Result.Err(ErrorCode.DB_ERROR, f"Failed to begin transaction: {exc}")
                return

            tx_state: Result[bool] = Result.Ok(True)
            token = f"tx_{uuid.uuid4().hex}"
            self._active_tx = token
            token_handle = _TX_TOKEN.set(token)
            try:
                try:
                    yield tx_state
                except BaseException:
                    await self._rollback_quietly()
                    raise
                try:
                    await conn.commit()
                except sqlite3.Error as exc:
                    await self._rollback_quietly()
                    logger.error("Commit failed: %s", exc)
                    tx_state.ok = False
                    tx_state.code = ErrorCode.DB_ERROR.value
                    tx_state.error = f"Commit failed: {exc}"
            finally:
                _TX_TOKEN.reset(token_handle)
                self._active_tx = None

            if tx_state.ok and persist:
                persist_res = await self._persist_locked()
                if not persist_res.ok:
                    tx_state.meta["persist_error"] = persist_res.error

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist_locked(self) -> Result[bool]:
        path = self._snapshot_path
        if path is None or not self._persist_enabled:
            return Result.Ok(False)
        if self._read_only:
            return self._read_only_error()
        try:
            with timer("snapshot persist", logger):
                size = await asyncio.to_thread(snapshot.write_snapshot, self._uri, path)
        except (OSError, sqlite3.Error) as exc:
            self._enter_read_only(str(exc))
            return Result.Err(ErrorCode.READ_ONLY, f"Snapshot persist failed: {exc}")
        self._last_persist_bytes = size
        return Result.Ok(True, bytes=size)

    async def apersist(self) -> Result[bool]:
        """Write the whole catalog to the snapshot file (atomic replace)."""
        ready = await self._ensure_open()
        if not ready.ok:
            return ready
        if self._in_transaction():
            return Result.Err(ErrorCode.DB_ERROR, "Cannot persist inside an open transaction")
        async with self._rwlock.write():
            return await self._persist_locked()

    async def asize_bytes(self) -> int:
        """Size of the snapshot file, or of the in-memory database when there is none."""
        path = self._snapshot_path
        if path is not None and path.exists():
            return path.stat().st_size
        result = await self.aquery(
            "SELECT page_count * page_size AS size FROM pragma_page_count(), pragma_page_size()"
        )
        if result.ok and result.data:
            return int(result.data[0]["size"] or 0)
        return 0
