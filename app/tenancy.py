"""Tenant context and schema-scoped raw query execution."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from tenantkit.schema_name import quote_identifier, workspace_schema_name

from app.db import DbTx, execute, fetch_all, get_conn

SCHEMA_PLACEHOLDER = "{schema}"


class NotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class TenantContext:
    workspace_id: str
    schema: str = field(repr=False)


def resolve_tenant(workspace_id: str) -> TenantContext:
    """Build the only value record stores accept as a tenant scope."""
    schema = workspace_schema_name(workspace_id)
    canonical = str(workspace_id if isinstance(workspace_id, uuid.UUID) else uuid.UUID(workspace_id.strip()))
    return TenantContext(workspace_id=canonical, schema=schema)


def _require_tenant(ctx: Any) -> TenantContext:
    if not isinstance(ctx, TenantContext):
        raise TypeError("TenantContext required")
    # Contexts are frozen, but a hand-built one must still name its own schema.
    if ctx.schema != workspace_schema_name(ctx.workspace_id):
        raise ValueError(f"Schema mismatch for workspace {ctx.workspace_id}")
    return ctx


def render_tenant_sql(ctx: TenantContext, sql: str) -> str:
    """Replace the schema placeholder with the tenant's quoted schema name.

    This is the only place tenant SQL gets a namespace; callers never build
    schema-qualified names themselves.
    """
    ctx = _require_tenant(ctx)
    if SCHEMA_PLACEHOLDER not in sql:
        raise ValueError("Tenant SQL must reference the {schema} placeholder")
    return sql.replace(SCHEMA_PLACEHOLDER, quote_identifier(ctx.schema))


class WorkspaceDataSource:
    """Raw parameterized SQL against one tenant's schema.

    ``tx`` lets callers run several operations in one transaction; without
    it each call borrows a connection and commits on its own.
    """

    def __init__(self, conn_factory: Callable[[], Any] | None = None) -> None:
        self._conn_factory = conn_factory or get_conn

    def fetch_raw(
        self,
        ctx: TenantContext,
        sql: str,
        params: Iterable[Any] | None = None,
        tx: DbTx | None = None,
        query_name: str | None = None,
    ) -> list[dict]:
        rendered = render_tenant_sql(ctx, sql)
        if tx is not None:
            return fetch_all(tx.conn, rendered, list(params or []), query_name=query_name)
        with self._conn_factory() as conn:
            return fetch_all(conn, rendered, list(params or []), query_name=query_name)

    def execute_raw(
        self,
        ctx: TenantContext,
        sql: str,
        params: Iterable[Any] | None = None,
        tx: DbTx | None = None,
        query_name: str | None = None,
    ) -> int:
        rendered = render_tenant_sql(ctx, sql)
        if tx is not None:
            return execute(tx.conn, rendered, list(params or []), query_name=query_name)
        with self._conn_factory() as conn:
            return execute(conn, rendered, list(params or []), query_name=query_name)
