"""DB helpers for the CRM Postgres database."""

from __future__ import annotations

import contextvars
import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterable

import psycopg2
import psycopg2.extras
from psycopg2.pool import SimpleConnectionPool


def get_db_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("PG_DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL or PG_DATABASE_URL is required when USE_DB=1")
    return url


_POOL: SimpleConnectionPool | None = None
_POOL_LOCK = threading.Lock()
_logger = logging.getLogger("crm.db")
_query_logger = logging.getLogger("crm.db.query")
_ACTIVE_CONN: contextvars.ContextVar[Any | None] = contextvars.ContextVar("crm_db_active_conn", default=None)
_DB_STATS: contextvars.ContextVar[dict | None] = contextvars.ContextVar("crm_db_stats", default=None)
_SLOW_MS = float(os.getenv("CRM_QUERY_SLOW_MS", "200"))
_LOG_ALL = os.getenv("CRM_QUERY_LOG", "").strip() == "1"


def _redact_params(params: Iterable[Any] | None) -> list[Any] | None:
    if params is None:
        return None
    redacted: list[Any] = []
    for val in params:
        if isinstance(val, (bytes, bytearray)):
            redacted.append(f"<bytes:{len(val)}>")
        elif isinstance(val, (list, tuple)):
            redacted.append(f"<list:{len(val)}>")
        elif isinstance(val, str) and len(val) > 40:
            redacted.append(f"{val[:8]}…<{len(val)} chars>")
        else:
            redacted.append(val)
    return redacted


def _log_query(*, query_name: str | None, params: Iterable[Any] | None, elapsed_ms: float, rowcount: int | None) -> None:
    stats = get_db_stats()
    stats["queries"] = stats.get("queries", 0) + 1
    stats["total_ms"] = stats.get("total_ms", 0.0) + elapsed_ms
    _DB_STATS.set(stats)
    if not _LOG_ALL and elapsed_ms < _SLOW_MS:
        return
    message = {
        "query": query_name or "unnamed",
        "ms": round(elapsed_ms, 2),
        "rowcount": rowcount,
        "params": _redact_params(params),
    }
    if elapsed_ms >= _SLOW_MS:
        _query_logger.warning("db_slow_query=%s", message)
    else:
        _query_logger.info("db_query=%s", message)


def init_pool(minconn: int | None = None, maxconn: int | None = None) -> None:
    global _POOL
    with _POOL_LOCK:
        if _POOL is None:
            if minconn is None:
                minconn = int(os.getenv("CRM_DB_POOL_MIN", "1"))
            if maxconn is None:
                maxconn = int(os.getenv("CRM_DB_POOL_MAX", "10"))
            _POOL = SimpleConnectionPool(minconn, maxconn, dsn=get_db_url())


def _get_pool() -> SimpleConnectionPool:
    if _POOL is None:
        init_pool()
    return _POOL


def reset_db_stats() -> None:
    _DB_STATS.set({"queries": 0, "total_ms": 0.0})


def get_db_stats() -> dict:
    stats = _DB_STATS.get()
    if not isinstance(stats, dict):
        return {"queries": 0, "total_ms": 0.0}
    return stats


def get_active_conn():
    return _ACTIVE_CONN.get()


@contextmanager
def get_conn():
    """Yield a connection, committing on success and rolling back on error.

    Inside an open ``DbTx`` the transaction's connection is yielded instead
    and the transaction owner decides when to commit.
    """
    active = get_active_conn()
    if active is not None:
        yield active
        return
    pool = _get_pool()
    conn = pool.getconn()
    _logger.debug("db_conn borrowed")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)
        _logger.debug("db_conn returned")


def fetch_one(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> dict | None:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        row = cur.fetchone()
        rowcount = cur.rowcount
    elapsed_ms = (time.perf_counter() - start) * 1000
    _log_query(query_name=query_name, params=params, elapsed_ms=elapsed_ms, rowcount=rowcount)
    return dict(row) if row else None


def fetch_all(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> list[dict]:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        rows = cur.fetchall()
        rowcount = cur.rowcount
    elapsed_ms = (time.perf_counter() - start) * 1000
    _log_query(query_name=query_name, params=params, elapsed_ms=elapsed_ms, rowcount=rowcount)
    return [dict(r) for r in rows]


def execute(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> int:
    start = time.perf_counter()
    with conn.cursor() as cur:
        cur.execute(sql, params or [])
        rowcount = cur.rowcount
    elapsed_ms = (time.perf_counter() - start) * 1000
    _log_query(query_name=query_name, params=params, elapsed_ms=elapsed_ms, rowcount=rowcount)
    return rowcount


_TX_CONTEXT: contextvars.ContextVar["_TxContext | None"] = contextvars.ContextVar("crm_db_tx", default=None)


class _TxContext:
    def __init__(self, conn, pool, token):
        self.conn = conn
        self.pool = pool
        self.token = token
        self.tx_token = None
        self.depth = 1
        self.failed = False


class DbTx:
    """Caller-owned transaction. Nested ``begin`` calls share one connection."""

    def __init__(self, ctx: _TxContext):
        self._ctx = ctx

    @property
    def conn(self):
        return self._ctx.conn

    def _release(self) -> None:
        ctx = self._ctx
        ctx.pool.putconn(ctx.conn)
        if ctx.tx_token is not None:
            _TX_CONTEXT.reset(ctx.tx_token)
        _ACTIVE_CONN.reset(ctx.token)

    def commit(self) -> None:
        ctx = self._ctx
        if ctx.depth > 1:
            ctx.depth -= 1
            return
        try:
            if ctx.failed:
                ctx.conn.rollback()
            else:
                ctx.conn.commit()
        finally:
            self._release()

    def rollback(self) -> None:
        ctx = self._ctx
        ctx.failed = True
        if ctx.depth > 1:
            ctx.depth -= 1
            return
        try:
            ctx.conn.rollback()
        finally:
            self._release()


class DbTxManager:
    def begin(self) -> DbTx:
        ctx = _TX_CONTEXT.get()
        if ctx is not None and get_active_conn() is ctx.conn:
            ctx.depth += 1
            return DbTx(ctx)
        pool = _get_pool()
        conn = pool.getconn()
        token = _ACTIVE_CONN.set(conn)
        ctx = _TxContext(conn, pool, token)
        ctx.tx_token = _TX_CONTEXT.set(ctx)
        return DbTx(ctx)
