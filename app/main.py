"""FastAPI app for the CRM workspace API."""

from __future__ import annotations

import logging
import os
import sys
import time
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.env import env_flag, get_demo_workspace_ids, load_env_file, use_db

load_env_file(ROOT / "app" / ".env")

from app.auth import JwtAuthMiddleware, auth_secret_from_env
from app.connected_accounts import ConnectedAccountNotFound, public_view
from app.db import DbTxManager, get_db_stats, reset_db_stats
from app.demo_seed import DemoSeedConfigError, seed_demo
from app.secrets import SecretStoreError, cipher_from_env
from app.settings_objects import (
    FieldMetadataNotFound,
    MetadataCommandError,
    ObjectMetadataNotFound,
    ObjectSettingsService,
)
from app.stores import (
    InMemoryTxManager,
    MemoryConnectedAccountStore,
    MemoryCoreWorkspaceStore,
    MemoryMetadataStore,
    MemoryWorkspaceManager,
)
from app.stores_db import DbConnectedAccountStore, DbMetadataStore, DbWorkspaceManager
from app.tenancy import TenantContext, resolve_tenant
from app.workspaces import DbCoreWorkspaceStore, get_membership

app = FastAPI(title="CRM workspace API")
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("crm")

USE_DB = use_db()
DEFAULT_WORKSPACE_ID = os.getenv("CRM_DEFAULT_WORKSPACE_ID", "20202020-1c25-4d02-bf25-6aeccf7ea419").strip()
REQ_SLOW_MS = float(os.getenv("CRM_REQ_SLOW_MS", "250"))

app.add_middleware(JwtAuthMiddleware, secret=auth_secret_from_env(), audience=os.getenv("CRM_JWT_AUD") or None)

_cipher = cipher_from_env()
if USE_DB:
    connected_accounts = DbConnectedAccountStore(cipher=_cipher)
    metadata_store = DbMetadataStore()
    core_store = DbCoreWorkspaceStore()
    workspace_manager = DbWorkspaceManager(metadata_store)
    tx_mgr = DbTxManager()
else:
    connected_accounts = MemoryConnectedAccountStore(cipher=_cipher)
    metadata_store = MemoryMetadataStore()
    core_store = MemoryCoreWorkspaceStore()
    workspace_manager = MemoryWorkspaceManager(connected_accounts, metadata_store)
    tx_mgr = InMemoryTxManager([connected_accounts, metadata_store, core_store, workspace_manager])
    core_store.seed_workspace(DEFAULT_WORKSPACE_ID)
    workspace_manager.init_demo(DEFAULT_WORKSPACE_ID)

object_settings = ObjectSettingsService(metadata_store)
logger.info("startup use_db=%s auth_disabled=%s", USE_DB, env_flag("CRM_DISABLE_AUTH"))


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    reset_db_stats()
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    stats = get_db_stats()
    logger.info(
        "%s %s %s total_ms=%.1f db_ms=%.1f db_q=%s",
        request.method,
        request.url.path,
        response.status_code,
        total_ms,
        stats.get("total_ms", 0.0),
        stats.get("queries", 0),
    )
    if total_ms >= REQ_SLOW_MS:
        logger.warning("slow_request method=%s path=%s total_ms=%.1f", request.method, request.url.path, total_ms)
    return response


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


async def _safe_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def _membership(user_id: str, workspace_id: str) -> dict | None:
    if USE_DB:
        return get_membership(user_id, workspace_id)
    for membership in core_store.list_memberships(user_id):
        if membership["workspace_id"] == workspace_id:
            return membership
    return None


def _resolve_actor(request: Request) -> dict | JSONResponse:
    user = getattr(request.state, "user", None)
    header_workspace = request.headers.get("X-Workspace-Id")
    if not user or not user.get("id"):
        if env_flag("CRM_DISABLE_AUTH"):
            return {
                "user_id": "test-user",
                "email": "test@example.com",
                "role": "admin",
                "workspace_id": header_workspace or DEFAULT_WORKSPACE_ID,
            }
        return _error_response("AUTH_REQUIRED", "Authenticated user required", status=401)
    token_workspace = user.get("workspace_id")
    workspace_id = header_workspace or token_workspace
    if not workspace_id:
        return _error_response("WORKSPACE_REQUIRED", "No workspace selected", "X-Workspace-Id", status=400)
    role = user.get("role") or "member"
    # Outside the database only the token's own workspace is trusted without a membership row.
    if USE_DB or workspace_id != token_workspace:
        membership = _membership(user["id"], workspace_id)
        if not membership:
            return _error_response("WORKSPACE_FORBIDDEN", "User is not a member of this workspace", "X-Workspace-Id", status=403)
        role = membership.get("role") or "member"
    return {"user_id": user["id"], "email": user.get("email"), "role": role, "workspace_id": workspace_id}


def _resolve_tenant(request: Request) -> tuple[dict, TenantContext] | JSONResponse:
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    try:
        ctx = resolve_tenant(actor["workspace_id"])
    except ValueError:
        return _error_response("WORKSPACE_INVALID", "Workspace id is not valid", "X-Workspace-Id", status=400)
    return actor, ctx


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


# ---- Connected accounts ----


@app.get("/connected-accounts")
async def list_connected_accounts(request: Request, provider: str = "google"):
    resolved = _resolve_tenant(request)
    if isinstance(resolved, JSONResponse):
        return resolved
    _, ctx = resolved
    items = connected_accounts.list_by_provider(ctx, provider)
    return _ok_response({"connected_accounts": [public_view(a) for a in items]})


@app.get("/connected-accounts/{account_id}")
async def get_connected_account(request: Request, account_id: str):
    resolved = _resolve_tenant(request)
    if isinstance(resolved, JSONResponse):
        return resolved
    _, ctx = resolved
    try:
        account = connected_accounts.get_by_id_or_fail(ctx, account_id)
    except ConnectedAccountNotFound:
        return _error_response("CONNECTED_ACCOUNT_NOT_FOUND", "No connected account found", "account_id", status=404)
    return _ok_response({"connected_account": public_view(account)})


@app.post("/connected-accounts/{account_id}/sync-cursor")
async def update_sync_cursor(request: Request, account_id: str):
    resolved = _resolve_tenant(request)
    if isinstance(resolved, JSONResponse):
        return resolved
    _, ctx = resolved
    body = await _safe_json(request)
    if not isinstance(body, dict):
        return _error_response("INVALID_BODY", "Expected JSON object", None, status=400)
    history_id = body.get("history_id")
    try:
        if body.get("only_if_newer", True):
            applied = connected_accounts.set_sync_cursor_if_newer(ctx, account_id, history_id)
        else:
            connected_accounts.set_sync_cursor(ctx, account_id, history_id)
            applied = True
    except ValueError as exc:
        return _error_response("INVALID_HISTORY_ID", str(exc), "history_id", status=400)
    return _ok_response({"applied": applied})


@app.delete("/connected-accounts/{account_id}/sync-cursor")
async def clear_sync_cursor(request: Request, account_id: str):
    resolved = _resolve_tenant(request)
    if isinstance(resolved, JSONResponse):
        return resolved
    _, ctx = resolved
    connected_accounts.clear_sync_cursor(ctx, account_id)
    return _ok_response({})


@app.put("/connected-accounts/{account_id}/access-token")
async def update_access_token(request: Request, account_id: str):
    resolved = _resolve_tenant(request)
    if isinstance(resolved, JSONResponse):
        return resolved
    _, ctx = resolved
    body = await _safe_json(request)
    token = body.get("access_token") if isinstance(body, dict) else None
    if not isinstance(token, str) or not token:
        return _error_response("ACCESS_TOKEN_REQUIRED", "access_token is required", "access_token", status=400)
    try:
        connected_accounts.set_access_token(ctx, account_id, token)
    except SecretStoreError as exc:
        return _error_response("SECRET_STORE_ERROR", str(exc), status=500)
    return _ok_response({})


# ---- Settings: data model ----


def _metadata_error(exc: Exception) -> JSONResponse:
    if isinstance(exc, ObjectMetadataNotFound):
        return _error_response("OBJECT_NOT_FOUND", str(exc), "object_slug", status=404)
    if isinstance(exc, FieldMetadataNotFound):
        return _error_response("FIELD_NOT_FOUND", str(exc), "field_id", status=404)
    return _error_response(getattr(exc, "code", "METADATA_COMMAND_FAILED"), str(exc), status=409)


@app.get("/settings/objects/{object_slug}")
async def get_object_settings(request: Request, object_slug: str):
    resolved = _resolve_tenant(request)
    if isinstance(resolved, JSONResponse):
        return resolved
    _, ctx = resolved
    try:
        detail = object_settings.get_object_detail(ctx, object_slug)
    except ObjectMetadataNotFound as exc:
        return _metadata_error(exc)
    return _ok_response({"object": detail})


@app.post("/settings/objects/{object_slug}/deactivate")
async def deactivate_object(request: Request, object_slug: str):
    resolved = _resolve_tenant(request)
    if isinstance(resolved, JSONResponse):
        return resolved
    _, ctx = resolved
    try:
        redirect = object_settings.deactivate_object(ctx, object_slug)
    except ObjectMetadataNotFound as exc:
        return _metadata_error(exc)
    return _ok_response({"redirect": redirect})


@app.post("/settings/objects/{object_slug}/label-identifier")
async def set_label_identifier(request: Request, object_slug: str):
    resolved = _resolve_tenant(request)
    if isinstance(resolved, JSONResponse):
        return resolved
    _, ctx = resolved
    body = await _safe_json(request)
    field_id = body.get("field_id") if isinstance(body, dict) else None
    if not field_id:
        return _error_response("FIELD_ID_REQUIRED", "field_id is required", "field_id", status=400)
    try:
        item = object_settings.set_label_identifier_field(ctx, object_slug, field_id)
    except (ObjectMetadataNotFound, FieldMetadataNotFound, MetadataCommandError) as exc:
        return _metadata_error(exc)
    return _ok_response({"label_identifier_field_metadata_id": item.label_identifier_field_metadata_id})


_FIELD_COMMANDS = {
    "activate": "activate_field",
    "deactivate": "deactivate_field",
    "erase": "erase_field",
}


@app.post("/settings/objects/{object_slug}/fields/{field_id}/{command}")
async def run_field_command(request: Request, object_slug: str, field_id: str, command: str):
    resolved = _resolve_tenant(request)
    if isinstance(resolved, JSONResponse):
        return resolved
    _, ctx = resolved
    method_name = _FIELD_COMMANDS.get(command)
    if not method_name:
        return _error_response("UNKNOWN_COMMAND", f"Unknown field command: {command}", "command", status=404)
    try:
        getattr(object_settings, method_name)(ctx, object_slug, field_id)
        detail = object_settings.get_object_detail(ctx, object_slug)
    except (ObjectMetadataNotFound, FieldMetadataNotFound, MetadataCommandError) as exc:
        return _metadata_error(exc)
    return _ok_response({"object": detail})


# ---- Admin ----


@app.post("/admin/seed-demo")
async def seed_demo_endpoint(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    if actor.get("role") != "admin":
        return _error_response("FORBIDDEN", "Admin role required", status=403)
    body = await _safe_json(request)
    demo_ids = get_demo_workspace_ids()
    workspace_ids = (body.get("workspace_ids") if isinstance(body, dict) else None) or demo_ids
    if not isinstance(workspace_ids, list):
        return _error_response("INVALID_BODY", "workspace_ids must be a list", "workspace_ids", status=400)
    foreign = [w for w in workspace_ids if w not in demo_ids]
    if foreign:
        return _error_response(
            "WORKSPACE_FORBIDDEN",
            "Only configured demo workspaces can be reseeded",
            "workspace_ids",
            detail={"workspace_ids": foreign},
            status=403,
        )
    try:
        results = seed_demo(workspace_ids, core_store, workspace_manager, tx_mgr)
    except DemoSeedConfigError as exc:
        return _error_response("DEMO_WORKSPACES_MISSING", str(exc), "workspace_ids", status=400)
    return _ok_response({"results": [r.to_dict() for r in results]})
