from __future__ import annotations

import os
import time

from app.db import execute, fetch_all, fetch_one, get_conn
from app.demo_data import DEMO_USERS, DEMO_WORKSPACE_DOMAIN, DEMO_WORKSPACE_NAME, demo_id

CORE_DDL = (
    "create schema if not exists core",
    """
    create table if not exists core.workspace (
      id uuid primary key,
      display_name text,
      domain_name text,
      invite_hash text,
      created_at timestamptz not null default now()
    )
    """,
    """
    create table if not exists core."user" (
      id uuid primary key,
      email text not null,
      first_name text,
      last_name text,
      default_workspace_id uuid references core.workspace(id) on delete set null,
      created_at timestamptz not null default now()
    )
    """,
    """
    create table if not exists core.user_workspace (
      user_id uuid not null references core."user"(id) on delete cascade,
      workspace_id uuid not null references core.workspace(id) on delete cascade,
      role text not null default 'member',
      created_at timestamptz not null default now(),
      primary key (user_id, workspace_id)
    )
    """,
)

_MEMBERSHIP_CACHE: dict[str, dict] = {}
_MEMBERSHIP_TTL_S = float(os.getenv("CRM_MEMBERSHIP_CACHE_TTL", "30"))


def bootstrap_core_schema() -> None:
    with get_conn() as conn:
        for statement in CORE_DDL:
            execute(conn, statement, query_name="core.ddl")


def list_memberships(user_id: str) -> list[dict]:
    now = time.time()
    cached = _MEMBERSHIP_CACHE.get(user_id)
    if cached and now - cached["ts"] < _MEMBERSHIP_TTL_S:
        return cached["value"]
    with get_conn() as conn:
        rows = fetch_all(
            conn,
            """
            select workspace_id::text as workspace_id, role
            from core.user_workspace
            where user_id=%s
            order by created_at asc
            """,
            [user_id],
            query_name="user_workspace.list_by_user",
        )
        value = rows or []
        _MEMBERSHIP_CACHE[user_id] = {"value": value, "ts": now}
        return value


def invalidate_membership_cache(user_id: str | None = None) -> None:
    if user_id:
        _MEMBERSHIP_CACHE.pop(user_id, None)
        return
    _MEMBERSHIP_CACHE.clear()


def get_membership(user_id: str, workspace_id: str) -> dict | None:
    for membership in list_memberships(user_id):
        if membership["workspace_id"] == str(workspace_id):
            return membership
    return None


class DbCoreWorkspaceStore:
    """Core-schema rows (workspace, users, memberships) for demo workspaces."""

    def delete_workspace(self, workspace_id: str) -> None:
        with get_conn() as conn:
            execute(
                conn,
                "delete from core.user_workspace where workspace_id=%s",
                [workspace_id],
                query_name="user_workspace.delete_workspace",
            )
            execute(
                conn,
                'delete from core."user" where default_workspace_id=%s',
                [workspace_id],
                query_name="user.delete_workspace",
            )
            execute(
                conn,
                "delete from core.workspace where id=%s",
                [workspace_id],
                query_name="workspace.delete",
            )
        invalidate_membership_cache()

    def seed_workspace(self, workspace_id: str) -> dict:
        with get_conn() as conn:
            workspace = fetch_one(
                conn,
                """
                insert into core.workspace (id, display_name, domain_name, invite_hash)
                values (%s, %s, %s, %s)
                returning id::text as id, display_name, domain_name, invite_hash
                """,
                [workspace_id, DEMO_WORKSPACE_NAME, DEMO_WORKSPACE_DOMAIN, demo_id(workspace_id, "invite")],
                query_name="workspace.insert",
            )
            for email, first_name, last_name, role in DEMO_USERS:
                user_id = demo_id(workspace_id, "user", email)
                execute(
                    conn,
                    """
                    insert into core."user" (id, email, first_name, last_name, default_workspace_id)
                    values (%s, %s, %s, %s, %s)
                    """,
                    [user_id, email, first_name, last_name, workspace_id],
                    query_name="user.insert",
                )
                execute(
                    conn,
                    """
                    insert into core.user_workspace (user_id, workspace_id, role)
                    values (%s, %s, %s)
                    """,
                    [user_id, workspace_id, role],
                    query_name="user_workspace.insert",
                )
        invalidate_membership_cache()
        return workspace or {"id": workspace_id}
