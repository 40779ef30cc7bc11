"""DB-backed stores for workspace records and metadata."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from tenantkit.sync_cursor import EMPTY_CURSOR, normalize_cursor

from app.connected_accounts import (
    ConnectedAccountNotFound,
    decode_row,
    dedupe_ids,
    encode_secrets,
    prepare_new_account,
)
from app.db import DbTx, execute, fetch_all, fetch_one, get_conn
from app.demo_data import DEMO_COMPANIES, DEMO_PEOPLE, demo_id
from app.metadata import FieldMetadataItem, ObjectMetadataItem, field_from_row, object_from_row, standard_objects
from app.secrets import TokenCipher
from app.tenancy import TenantContext, WorkspaceDataSource, resolve_tenant

logger = logging.getLogger("crm.accounts")

WORKSPACE_DDL = (
    "create schema if not exists {schema}",
    """
    create table if not exists {schema}.company (
      id uuid primary key default gen_random_uuid(),
      name text not null,
      domain_name text,
      employees integer,
      address text,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now()
    )
    """,
    """
    create table if not exists {schema}.person (
      id uuid primary key default gen_random_uuid(),
      first_name text,
      last_name text,
      email text,
      city text,
      company_id uuid references {schema}.company(id) on delete set null,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now()
    )
    """,
    """
    create table if not exists {schema}.connected_account (
      id uuid primary key default gen_random_uuid(),
      provider text not null default 'google',
      handle text not null,
      access_token text not null default '',
      refresh_token text not null default '',
      last_sync_history_id text not null default '',
      account_owner_id uuid,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now()
    )
    """,
    "create index if not exists connected_account_provider_idx on {schema}.connected_account (provider)",
)

METADATA_DDL = (
    "create schema if not exists metadata",
    """
    create table if not exists metadata.object_metadata (
      id uuid primary key,
      workspace_id uuid not null,
      name_singular text not null,
      name_plural text not null,
      label_singular text not null,
      label_plural text not null,
      icon text,
      is_custom boolean not null default false,
      is_active boolean not null default true,
      is_system boolean not null default false,
      label_identifier_field_metadata_id uuid,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now(),
      unique (workspace_id, name_singular)
    )
    """,
    """
    create table if not exists metadata.field_metadata (
      id uuid primary key,
      workspace_id uuid not null,
      object_metadata_id uuid not null references metadata.object_metadata(id) on delete cascade,
      name text not null,
      label text not null,
      type text not null,
      icon text,
      description text,
      is_custom boolean not null default false,
      is_active boolean not null default true,
      is_system boolean not null default false,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now(),
      unique (object_metadata_id, name)
    )
    """,
)


def _is_uuid(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
        return True
    except (TypeError, ValueError):
        return False


class DbConnectedAccountStore:
    def __init__(self, data_source: WorkspaceDataSource | None = None, cipher: TokenCipher | None = None) -> None:
        self._ds = data_source or WorkspaceDataSource()
        self._cipher = cipher

    def create(self, ctx: TenantContext, values: dict, tx: DbTx | None = None) -> dict:
        row = encode_secrets(prepare_new_account(values), self._cipher)
        rows = self._ds.fetch_raw(
            ctx,
            """
            insert into {schema}.connected_account
              (id, provider, handle, access_token, refresh_token, last_sync_history_id, account_owner_id)
            values (coalesce(%s::uuid, gen_random_uuid()), %s, %s, %s, %s, %s, %s)
            returning *
            """,
            [
                row.get("id"),
                row["provider"],
                row["handle"],
                row["access_token"],
                row["refresh_token"],
                row["last_sync_history_id"],
                row.get("account_owner_id"),
            ],
            tx=tx,
            query_name="connected_account.insert",
        )
        logger.info("connected_account_created workspace_id=%s provider=%s", ctx.workspace_id, row["provider"])
        return decode_row(rows[0], self._cipher)

    def list_by_provider(self, ctx: TenantContext, provider: str, tx: DbTx | None = None) -> list[dict]:
        rows = self._ds.fetch_raw(
            ctx,
            """
            select * from {schema}.connected_account
            where provider=%s
            order by created_at asc, id asc
            """,
            [provider],
            tx=tx,
            query_name="connected_account.list_by_provider",
        )
        return [decode_row(r, self._cipher) for r in rows]

    def list_by_ids(self, ctx: TenantContext, ids: Any, tx: DbTx | None = None) -> list[dict]:
        wanted = [i for i in dedupe_ids(ids) if _is_uuid(i)]
        if not wanted:
            return []
        rows = self._ds.fetch_raw(
            ctx,
            "select * from {schema}.connected_account where id = any(%s::uuid[])",
            [wanted],
            tx=tx,
            query_name="connected_account.list_by_ids",
        )
        return [decode_row(r, self._cipher) for r in rows]

    def get_by_id_or_fail(self, ctx: TenantContext, account_id: str, tx: DbTx | None = None) -> dict:
        if not _is_uuid(account_id):
            raise ConnectedAccountNotFound(account_id)
        rows = self._ds.fetch_raw(
            ctx,
            "select * from {schema}.connected_account where id=%s limit 1",
            [str(account_id)],
            tx=tx,
            query_name="connected_account.get",
        )
        if not rows:
            raise ConnectedAccountNotFound(account_id)
        return decode_row(rows[0], self._cipher)

    def set_sync_cursor(self, ctx: TenantContext, account_id: str, history_id: Any, tx: DbTx | None = None) -> None:
        cursor = normalize_cursor(history_id)
        if not _is_uuid(account_id):
            return
        self._ds.execute_raw(
            ctx,
            "update {schema}.connected_account set last_sync_history_id=%s, updated_at=now() where id=%s",
            [cursor, str(account_id)],
            tx=tx,
            query_name="connected_account.set_sync_cursor",
        )

    def set_sync_cursor_if_newer(self, ctx: TenantContext, account_id: str, history_id: Any, tx: DbTx | None = None) -> bool:
        """Advance the cursor in one statement; stale cursors are ignored.

        History ids are normalised digit strings, so comparing length and
        then C-collated text is a numeric compare without casts.
        """
        cursor = normalize_cursor(history_id)
        if not _is_uuid(account_id):
            return False
        count = self._ds.execute_raw(
            ctx,
            """
            update {schema}.connected_account
            set last_sync_history_id=%s, updated_at=now()
            where id=%s
              and (
                coalesce(last_sync_history_id, '') = ''
                or length(last_sync_history_id) < length(%s)
                or (length(last_sync_history_id) = length(%s) and last_sync_history_id collate "C" < %s)
              )
            """,
            [cursor, str(account_id), cursor, cursor, cursor],
            tx=tx,
            query_name="connected_account.set_sync_cursor_if_newer",
        )
        return count > 0

    def clear_sync_cursor(self, ctx: TenantContext, account_id: str, tx: DbTx | None = None) -> None:
        if not _is_uuid(account_id):
            return
        self._ds.execute_raw(
            ctx,
            "update {schema}.connected_account set last_sync_history_id=%s, updated_at=now() where id=%s",
            [EMPTY_CURSOR, str(account_id)],
            tx=tx,
            query_name="connected_account.clear_sync_cursor",
        )

    def set_access_token(self, ctx: TenantContext, account_id: str, access_token: str, tx: DbTx | None = None) -> None:
        if not _is_uuid(account_id):
            return
        value = encode_secrets({"access_token": access_token}, self._cipher)["access_token"]
        self._ds.execute_raw(
            ctx,
            "update {schema}.connected_account set access_token=%s, updated_at=now() where id=%s",
            [value, str(account_id)],
            tx=tx,
            query_name="connected_account.set_access_token",
        )


_OBJECT_UPDATABLE = ("is_active", "label_identifier_field_metadata_id", "label_singular", "label_plural", "icon")
_FIELD_UPDATABLE = ("is_active", "label", "description", "icon")


class DbMetadataStore:
    def create_object(self, ctx: TenantContext, item: ObjectMetadataItem) -> ObjectMetadataItem:
        with get_conn() as conn:
            execute(
                conn,
                """
                insert into metadata.object_metadata
                  (id, workspace_id, name_singular, name_plural, label_singular, label_plural, icon,
                   is_custom, is_active, is_system, label_identifier_field_metadata_id)
                values (%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                """,
                [
                    item.id,
                    ctx.workspace_id,
                    item.name_singular,
                    item.name_plural,
                    item.label_singular,
                    item.label_plural,
                    item.icon,
                    item.is_custom,
                    item.is_active,
                    item.is_system,
                    item.label_identifier_field_metadata_id,
                ],
                query_name="object_metadata.insert",
            )
            for field_item in item.fields:
                execute(
                    conn,
                    """
                    insert into metadata.field_metadata
                      (id, workspace_id, object_metadata_id, name, label, type, icon, description,
                       is_custom, is_active, is_system)
                    values (%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                    """,
                    [
                        field_item.id,
                        ctx.workspace_id,
                        item.id,
                        field_item.name,
                        field_item.label,
                        field_item.type.value,
                        field_item.icon,
                        field_item.description,
                        field_item.is_custom,
                        field_item.is_active,
                        field_item.is_system,
                    ],
                    query_name="field_metadata.insert",
                )
        return item

    def list_objects(self, ctx: TenantContext) -> list[ObjectMetadataItem]:
        with get_conn() as conn:
            object_rows = fetch_all(
                conn,
                "select * from metadata.object_metadata where workspace_id=%s order by name_singular asc",
                [ctx.workspace_id],
                query_name="object_metadata.list",
            )
            field_rows = fetch_all(
                conn,
                "select * from metadata.field_metadata where workspace_id=%s order by created_at asc, name asc",
                [ctx.workspace_id],
                query_name="field_metadata.list",
            )
        fields_by_object: dict[str, list[FieldMetadataItem]] = {}
        for row in field_rows:
            fields_by_object.setdefault(str(row["object_metadata_id"]), []).append(field_from_row(row))
        return [object_from_row(row, fields_by_object.get(str(row["id"]), [])) for row in object_rows]

    def update_object(self, ctx: TenantContext, object_id: str, changes: dict) -> ObjectMetadataItem | None:
        fields = []
        params: list[Any] = []
        for key in _OBJECT_UPDATABLE:
            if key in changes:
                fields.append(f"{key}=%s")
                params.append(changes[key])
        if not fields:
            return None
        params.extend([ctx.workspace_id, object_id])
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"""
                update metadata.object_metadata set {', '.join(fields)}, updated_at=now()
                where workspace_id=%s and id=%s
                returning *
                """,
                params,
                query_name="object_metadata.update",
            )
        return object_from_row(row) if row else None

    def update_field(self, ctx: TenantContext, field_id: str, changes: dict) -> FieldMetadataItem | None:
        fields = []
        params: list[Any] = []
        for key in _FIELD_UPDATABLE:
            if key in changes:
                fields.append(f"{key}=%s")
                params.append(changes[key])
        if not fields:
            return None
        params.extend([ctx.workspace_id, field_id])
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"""
                update metadata.field_metadata set {', '.join(fields)}, updated_at=now()
                where workspace_id=%s and id=%s
                returning *
                """,
                params,
                query_name="field_metadata.update",
            )
        return field_from_row(row) if row else None

    def delete_field(self, ctx: TenantContext, field_id: str) -> bool:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                "delete from metadata.field_metadata where workspace_id=%s and id=%s returning id",
                [ctx.workspace_id, field_id],
                query_name="field_metadata.delete",
            )
        return bool(row)

    def delete_workspace(self, ctx: TenantContext) -> None:
        with get_conn() as conn:
            execute(
                conn,
                "delete from metadata.object_metadata where workspace_id=%s",
                [ctx.workspace_id],
                query_name="object_metadata.delete_workspace",
            )


class DbWorkspaceManager:
    """Workspace schema lifecycle: drop, create and fill with demo records."""

    def __init__(self, metadata: DbMetadataStore | None = None, data_source: WorkspaceDataSource | None = None) -> None:
        self._metadata = metadata or DbMetadataStore()
        self._ds = data_source or WorkspaceDataSource()

    def delete(self, workspace_id: str) -> None:
        ctx = resolve_tenant(workspace_id)
        self._metadata.delete_workspace(ctx)
        self._ds.execute_raw(ctx, "drop schema if exists {schema} cascade", query_name="workspace.drop_schema")

    def create_schema(self, ctx: TenantContext) -> None:
        for statement in WORKSPACE_DDL:
            self._ds.execute_raw(ctx, statement, query_name="workspace.ddl")

    def init_demo(self, workspace_id: str) -> None:
        ctx = resolve_tenant(workspace_id)
        self.create_schema(ctx)
        for item in standard_objects(ctx.workspace_id):
            self._metadata.create_object(ctx, item)
        company_ids = {}
        for name, domain_name, employees, address in DEMO_COMPANIES:
            company_id = demo_id(ctx.workspace_id, "company", domain_name)
            company_ids[domain_name] = company_id
            self._ds.execute_raw(
                ctx,
                "insert into {schema}.company (id, name, domain_name, employees, address) values (%s,%s,%s,%s,%s)",
                [company_id, name, domain_name, employees, address],
                query_name="company.insert_demo",
            )
        for first_name, last_name, email, city, domain in DEMO_PEOPLE:
            self._ds.execute_raw(
                ctx,
                """
                insert into {schema}.person (id, first_name, last_name, email, city, company_id)
                values (%s,%s,%s,%s,%s,%s)
                """,
                [demo_id(ctx.workspace_id, "person", email), first_name, last_name, email, city, company_ids.get(domain)],
                query_name="person.insert_demo",
            )
        logger.info("workspace_demo_initialized workspace_id=%s", ctx.workspace_id)


def bootstrap_metadata_schema() -> None:
    with get_conn() as conn:
        for statement in METADATA_DDL:
            execute(conn, statement, query_name="metadata.ddl")
