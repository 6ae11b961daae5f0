"""
Transaction and SQL utility helpers used by the SQLite adapter.
"""
from typing import Any

from ...shared import ErrorCode, Result


def tx_token(ctx_var: Any) -> str | None:
    ctx_tok = ctx_var.get()
    return str(ctx_tok) if ctx_tok else None


def rows_to_dicts(rows: Any) -> list[dict[str, Any]]:
    if not rows:
        return []
    return [dict(r) for r in rows]


def is_write_sql(query: str) -> bool:
    q = str(query or "").lstrip()
    if not q:
        return False
    head = q.split(None, 1)[0].upper()
    if head in ("SELECT", "PRAGMA", "WITH", "EXPLAIN"):
        return False
    return True


def begin_stmt_for_mode(mode: str) -> str:
    mode_l = str(mode or "").strip().lower()
    if mode_l in ("immediate", "write"):
        return "BEGIN IMMEDIATE"
    if mode_l in ("exclusive",):
        return "BEGIN EXCLUSIVE"
    return "BEGIN"


def cursor_write_result(cursor: Any) -> Result[Any]:
    rowcount = getattr(cursor, "rowcount", None)
    return Result.Ok(rowcount if rowcount is not None and rowcount >= 0 else 0)


def integrity_error_result(exc: Exception) -> Result[Any]:
    if is_unique_violation(exc):
        return Result.Err(ErrorCode.CONFLICT, f"Unique constraint violated: {exc}")
    return Result.Err(ErrorCode.DB_ERROR, f"Integrity error: {exc}")


def is_unique_violation(exc: Exception) -> bool:
    return "unique constraint failed" in str(exc).lower()
