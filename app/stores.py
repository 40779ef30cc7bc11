"""In-memory stores and transaction stubs for local runs and tests."""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from tenantkit.sync_cursor import EMPTY_CURSOR, cursor_is_newer, normalize_cursor

from app.connected_accounts import (
    ConnectedAccountNotFound,
    decode_row,
    dedupe_ids,
    encode_secrets,
    prepare_new_account,
)
from app.demo_data import (
    DEMO_COMPANIES,
    DEMO_PEOPLE,
    DEMO_USERS,
    DEMO_WORKSPACE_DOMAIN,
    DEMO_WORKSPACE_NAME,
    demo_id,
)
from app.metadata import FieldMetadataItem, ObjectMetadataItem, standard_objects
from app.secrets import TokenCipher
from app.tenancy import TenantContext, resolve_tenant


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class InMemoryTx:
    """Snapshot of the participating stores, restored on rollback."""

    def __init__(self, stores: list[Any]) -> None:
        self._saved = [(store, store.snapshot()) for store in stores]
        self.committed = False
        self.rolled_back = False

    def commit(self) -> None:
        self.committed = True
        self._saved = []

    def rollback(self) -> None:
        for store, state in self._saved:
            store.restore(state)
        self._saved = []
        self.rolled_back = True


class InMemoryTxManager:
    def __init__(self, stores: list[Any] | None = None) -> None:
        self._stores = list(stores or [])

    def begin(self) -> InMemoryTx:
        return InMemoryTx(self._stores)


class MemoryConnectedAccountStore:
    """Connected accounts bucketed by tenant schema."""

    def __init__(self, cipher: TokenCipher | None = None) -> None:
        self._rows: Dict[str, Dict[str, dict]] = {}
        self._cipher = cipher

    def _bucket(self, ctx: TenantContext) -> Dict[str, dict]:
        if not isinstance(ctx, TenantContext):
            raise TypeError("TenantContext required")
        return self._rows.setdefault(ctx.schema, {})

    def snapshot(self) -> dict:
        return copy.deepcopy(self._rows)

    def restore(self, state: dict) -> None:
        self._rows = copy.deepcopy(state)

    def drop_tenant(self, ctx: TenantContext) -> None:
        self._rows.pop(ctx.schema, None)

    def create(self, ctx: TenantContext, values: dict, tx: Any = None) -> dict:
        row = prepare_new_account(values)
        row["id"] = str(row.get("id") or uuid.uuid4())
        now = _now()
        row["created_at"] = now
        row["updated_at"] = now
        self._bucket(ctx)[row["id"]] = encode_secrets(row, self._cipher)
        return decode_row(copy.deepcopy(self._bucket(ctx)[row["id"]]), self._cipher)

    def list_by_provider(self, ctx: TenantContext, provider: str, tx: Any = None) -> list[dict]:
        rows = [r for r in self._bucket(ctx).values() if r.get("provider") == provider]
        return [decode_row(copy.deepcopy(r), self._cipher) for r in rows]

    def list_by_ids(self, ctx: TenantContext, ids: Any, tx: Any = None) -> list[dict]:
        bucket = self._bucket(ctx)
        return [decode_row(copy.deepcopy(bucket[i]), self._cipher) for i in dedupe_ids(ids) if i in bucket]

    def get_by_id_or_fail(self, ctx: TenantContext, account_id: str, tx: Any = None) -> dict:
        row = self._bucket(ctx).get(str(account_id))
        if row is None:
            raise ConnectedAccountNotFound(account_id)
        return decode_row(copy.deepcopy(row), self._cipher)

    def _update(self, ctx: TenantContext, account_id: str, changes: dict) -> bool:
        row = self._bucket(ctx).get(str(account_id))
        if row is None:
            return False
        row.update(changes)
        row["updated_at"] = _now()
        return True

    def set_sync_cursor(self, ctx: TenantContext, account_id: str, history_id: Any, tx: Any = None) -> None:
        self._update(ctx, account_id, {"last_sync_history_id": normalize_cursor(history_id)})

    def set_sync_cursor_if_newer(self, ctx: TenantContext, account_id: str, history_id: Any, tx: Any = None) -> bool:
        cursor = normalize_cursor(history_id)
        row = self._bucket(ctx).get(str(account_id))
        if row is None or not cursor_is_newer(cursor, row.get("last_sync_history_id")):
            return False
        return self._update(ctx, account_id, {"last_sync_history_id": cursor})

    def clear_sync_cursor(self, ctx: TenantContext, account_id: str, tx: Any = None) -> None:
        self._update(ctx, account_id, {"last_sync_history_id": EMPTY_CURSOR})

    def set_access_token(self, ctx: TenantContext, account_id: str, access_token: str, tx: Any = None) -> None:
        self._update(ctx, account_id, encode_secrets({"access_token": access_token}, self._cipher))


class MemoryMetadataStore:
    def __init__(self) -> None:
        self._objects: Dict[str, Dict[str, ObjectMetadataItem]] = {}

    def _bucket(self, ctx: TenantContext) -> Dict[str, ObjectMetadataItem]:
        if not isinstance(ctx, TenantContext):
            raise TypeError("TenantContext required")
        return self._objects.setdefault(ctx.workspace_id, {})

    def snapshot(self) -> dict:
        return copy.deepcopy(self._objects)

    def restore(self, state: dict) -> None:
        self._objects = copy.deepcopy(state)

    def create_object(self, ctx: TenantContext, item: ObjectMetadataItem) -> ObjectMetadataItem:
        stored = copy.deepcopy(item)
        stored.workspace_id = ctx.workspace_id
        self._bucket(ctx)[stored.id] = stored
        return copy.deepcopy(stored)

    def list_objects(self, ctx: TenantContext) -> list[ObjectMetadataItem]:
        return [copy.deepcopy(item) for item in self._bucket(ctx).values()]

    def update_object(self, ctx: TenantContext, object_id: str, changes: dict) -> ObjectMetadataItem | None:
        item = self._bucket(ctx).get(object_id)
        if item is None:
            return None
        for key in ("is_active", "label_identifier_field_metadata_id", "label_singular", "label_plural", "icon"):
            if key in changes:
                setattr(item, key, changes[key])
        return copy.deepcopy(item)

    def _locate_field(self, ctx: TenantContext, field_id: str) -> tuple[ObjectMetadataItem, FieldMetadataItem] | None:
        for item in self._bucket(ctx).values():
            for field_item in item.fields:
                if field_item.id == field_id:
                    return item, field_item
        return None

    def update_field(self, ctx: TenantContext, field_id: str, changes: dict) -> FieldMetadataItem | None:
        found = self._locate_field(ctx, field_id)
        if not found:
            return None
        _, field_item = found
        for key in ("is_active", "label", "description", "icon"):
            if key in changes:
                setattr(field_item, key, changes[key])
        return copy.deepcopy(field_item)

    def delete_field(self, ctx: TenantContext, field_id: str) -> bool:
        found = self._locate_field(ctx, field_id)
        if not found:
            return False
        item, field_item = found
        item.fields = [f for f in item.fields if f.id != field_item.id]
        return True

    def delete_workspace(self, ctx: TenantContext) -> None:
        self._objects.pop(ctx.workspace_id, None)


class MemoryCoreWorkspaceStore:
    """Workspaces, users and memberships normally kept in the core schema."""

    def __init__(self) -> None:
        self.workspaces: Dict[str, dict] = {}
        self.users: Dict[str, dict] = {}
        self.memberships: List[dict] = []

    def snapshot(self) -> tuple:
        return copy.deepcopy((self.workspaces, self.users, self.memberships))

    def restore(self, state: tuple) -> None:
        self.workspaces, self.users, self.memberships = copy.deepcopy(state)

    def delete_workspace(self, workspace_id: str) -> None:
        self.memberships = [m for m in self.memberships if m["workspace_id"] != workspace_id]
        self.users = {k: u for k, u in self.users.items() if u.get("default_workspace_id") != workspace_id}
        self.workspaces.pop(workspace_id, None)

    def seed_workspace(self, workspace_id: str) -> dict:
        workspace = {
            "id": workspace_id,
            "display_name": DEMO_WORKSPACE_NAME,
            "domain_name": DEMO_WORKSPACE_DOMAIN,
            "invite_hash": demo_id(workspace_id, "invite"),
            "created_at": _now(),
        }
        self.workspaces[workspace_id] = workspace
        for email, first_name, last_name, role in DEMO_USERS:
            user_id = demo_id(workspace_id, "user", email)
            self.users[user_id] = {
                "id": user_id,
                "email": email,
                "first_name": first_name,
                "last_name": last_name,
                "default_workspace_id": workspace_id,
            }
            self.memberships.append({"user_id": user_id, "workspace_id": workspace_id, "role": role})
        return dict(workspace)

    def list_memberships(self, user_id: str) -> list[dict]:
        return [dict(m) for m in self.memberships if m["user_id"] == user_id]


class MemoryWorkspaceManager:
    """Creates and tears down the records that live inside a workspace."""

    def __init__(self, accounts: MemoryConnectedAccountStore, metadata: MemoryMetadataStore) -> None:
        self._accounts = accounts
        self._metadata = metadata
        self.records: Dict[str, Dict[str, List[dict]]] = {}

    def snapshot(self) -> dict:
        return copy.deepcopy(self.records)

    def restore(self, state: dict) -> None:
        self.records = copy.deepcopy(state)

    def delete(self, workspace_id: str) -> None:
        ctx = resolve_tenant(workspace_id)
        self.records.pop(ctx.schema, None)
        self._accounts.drop_tenant(ctx)
        self._metadata.delete_workspace(ctx)

    def init_demo(self, workspace_id: str) -> None:
        ctx = resolve_tenant(workspace_id)
        for item in standard_objects(ctx.workspace_id):
            self._metadata.create_object(ctx, item)
        companies = []
        company_ids = {}
        for name, domain_name, employees, address in DEMO_COMPANIES:
            company_id = demo_id(ctx.workspace_id, "company", domain_name)
            company_ids[domain_name] = company_id
            companies.append(
                {"id": company_id, "name": name, "domain_name": domain_name, "employees": employees, "address": address}
            )
        people = [
            {
                "id": demo_id(ctx.workspace_id, "person", email),
                "first_name": first_name,
                "last_name": last_name,
                "email": email,
                "city": city,
                "company_id": company_ids.get(domain),
            }
            for first_name, last_name, email, city, domain in DEMO_PEOPLE
        ]
        self.records[ctx.schema] = {"company": companies, "person": people}
