import os
import sys
import unittest
import uuid
from unittest.mock import patch

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

os.environ["USE_DB"] = "0"
os.environ["CRM_DISABLE_AUTH"] = "1"
os.environ["CRM_JWT_SECRET"] = "api-test-secret"
os.environ.pop("DEMO_WORKSPACE_IDS", None)

from fastapi.testclient import TestClient
from jose import jwt

import app.main as main
from app.demo_data import demo_id
from app.tenancy import resolve_tenant


class TestConnectedAccountsApi(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(main.app)
        self.workspace_id = str(uuid.uuid4())
        self.headers = {"X-Workspace-Id": self.workspace_id}
        self.account = main.connected_accounts.create(
            resolve_tenant(self.workspace_id),
            {"handle": "tim@apple.dev", "access_token": "secret", "refresh_token": "refresh"},
        )

    def test_health(self) -> None:
        res = self.client.get("/health")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"ok": True})

    def test_list_hides_tokens(self) -> None:
        res = self.client.get("/connected-accounts", headers=self.headers)
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertTrue(body["ok"])
        self.assertEqual(len(body["connected_accounts"]), 1)
        self.assertNotIn("access_token", body["connected_accounts"][0])

    def test_other_workspace_is_empty(self) -> None:
        res = self.client.get("/connected-accounts", headers={"X-Workspace-Id": str(uuid.uuid4())})
        self.assertEqual(res.json()["connected_accounts"], [])
        res = self.client.get(f"/connected-accounts/{self.account['id']}", headers={"X-Workspace-Id": str(uuid.uuid4())})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "CONNECTED_ACCOUNT_NOT_FOUND")

    def test_invalid_workspace_header(self) -> None:
        res = self.client.get("/connected-accounts", headers={"X-Workspace-Id": "not-a-workspace"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "WORKSPACE_INVALID")

    def test_sync_cursor_only_moves_forward(self) -> None:
        path = f"/connected-accounts/{self.account['id']}/sync-cursor"
        self.assertTrue(self.client.post(path, json={"history_id": "100"}, headers=self.headers).json()["applied"])
        self.assertFalse(self.client.post(path, json={"history_id": "50"}, headers=self.headers).json()["applied"])
        res = self.client.get(f"/connected-accounts/{self.account['id']}", headers=self.headers)
        self.assertEqual(res.json()["connected_account"]["last_sync_history_id"], "100")
        forced = self.client.post(path, json={"history_id": "50", "only_if_newer": False}, headers=self.headers)
        self.assertTrue(forced.json()["applied"])
        self.assertEqual(self.client.delete(path, headers=self.headers).status_code, 200)
        res = self.client.get(f"/connected-accounts/{self.account['id']}", headers=self.headers)
        self.assertEqual(res.json()["connected_account"]["last_sync_history_id"], "")

    def test_sync_cursor_validation(self) -> None:
        path = f"/connected-accounts/{self.account['id']}/sync-cursor"
        res = self.client.post(path, json={"history_id": "12a"}, headers=self.headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "INVALID_HISTORY_ID")
        res = self.client.post(path, content=b"nope", headers=self.headers)
        self.assertEqual(res.json()["errors"][0]["code"], "INVALID_BODY")

    def test_access_token_rotation(self) -> None:
        path = f"/connected-accounts/{self.account['id']}/access-token"
        self.assertEqual(self.client.put(path, json={}, headers=self.headers).status_code, 400)
        self.assertEqual(self.client.put(path, json={"access_token": "rotated"}, headers=self.headers).status_code, 200)
        stored = main.connected_accounts.get_by_id_or_fail(resolve_tenant(self.workspace_id), self.account["id"])
        self.assertEqual(stored["access_token"], "rotated")


class TestObjectSettingsApi(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(main.app)
        self.workspace_id = str(uuid.uuid4())
        self.headers = {"X-Workspace-Id": self.workspace_id}
        main.workspace_manager.init_demo(self.workspace_id)

    def _field_id(self, name: str) -> str:
        detail = self.client.get("/settings/objects/companies", headers=self.headers).json()["object"]
        for section in detail["sections"]:
            for row in section["rows"]:
                if row["field"]["name"] == name:
                    return row["field"]["id"]
        raise AssertionError(name)

    def test_default_workspace_is_seeded(self) -> None:
        res = self.client.get("/settings/objects/people")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["object"]["about"]["name"], "People")

    def test_object_detail_and_missing(self) -> None:
        res = self.client.get("/settings/objects/companies", headers=self.headers)
        self.assertEqual(res.json()["object"]["slug"], "companies")
        res = self.client.get("/settings/objects/unicorns", headers=self.headers)
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "OBJECT_NOT_FOUND")

    def test_field_commands(self) -> None:
        field_id = self._field_id("employees")
        res = self.client.post(f"/settings/objects/companies/fields/{field_id}/deactivate", headers=self.headers)
        self.assertEqual(res.status_code, 200)
        titles = [s["title"] for s in res.json()["object"]["sections"]]
        self.assertEqual(titles, ["Active", "Inactive"])
        res = self.client.post(f"/settings/objects/companies/fields/{field_id}/erase", headers=self.headers)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["errors"][0]["code"], "FIELD_IS_STANDARD")
        res = self.client.post(f"/settings/objects/companies/fields/{field_id}/explode", headers=self.headers)
        self.assertEqual(res.json()["errors"][0]["code"], "UNKNOWN_COMMAND")
        res = self.client.post(f"/settings/objects/companies/fields/{uuid.uuid4()}/activate", headers=self.headers)
        self.assertEqual(res.json()["errors"][0]["code"], "FIELD_NOT_FOUND")

    def test_label_identifier_rules(self) -> None:
        res = self.client.post("/settings/objects/companies/label-identifier", json={}, headers=self.headers)
        self.assertEqual(res.json()["errors"][0]["code"], "FIELD_ID_REQUIRED")
        res = self.client.post(
            "/settings/objects/companies/label-identifier",
            json={"field_id": self._field_id("domainName")},
            headers=self.headers,
        )
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["errors"][0]["code"], "LABEL_IDENTIFIER_NOT_ALLOWED")

    def test_deactivate_object_redirects(self) -> None:
        res = self.client.post("/settings/objects/people/deactivate", headers=self.headers)
        self.assertEqual(res.json()["redirect"], "/settings/objects")
        self.assertEqual(self.client.get("/settings/objects/people", headers=self.headers).status_code, 404)


class TestSeedDemoApi(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(main.app)

    def test_seed_requested_workspaces(self) -> None:
        workspace_id = str(uuid.uuid4())
        with patch.dict(os.environ, {"DEMO_WORKSPACE_IDS": workspace_id}):
            res = self.client.post("/admin/seed-demo", json={"workspace_ids": [workspace_id]})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["results"], [{"workspace_id": workspace_id, "ok": True, "error": None}])
        detail = self.client.get("/settings/objects/companies", headers={"X-Workspace-Id": workspace_id})
        self.assertEqual(detail.status_code, 200)

    def test_seed_reports_bad_ids(self) -> None:
        with patch.dict(os.environ, {"DEMO_WORKSPACE_IDS": "bogus"}):
            res = self.client.post("/admin/seed-demo", json={"workspace_ids": ["bogus"]})
        self.assertEqual(res.status_code, 200)
        self.assertFalse(res.json()["results"][0]["ok"])

    def test_seed_rejects_workspaces_outside_demo_list(self) -> None:
        workspace_id = str(uuid.uuid4())
        ctx = resolve_tenant(workspace_id)
        account = main.connected_accounts.create(ctx, {"handle": "victim@corp.dev"})
        with patch.dict(os.environ, {"DEMO_WORKSPACE_IDS": str(uuid.uuid4())}):
            res = self.client.post("/admin/seed-demo", json={"workspace_ids": [workspace_id]})
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["errors"][0]["code"], "WORKSPACE_FORBIDDEN")
        self.assertEqual(main.connected_accounts.get_by_id_or_fail(ctx, account["id"])["handle"], "victim@corp.dev")

    def test_seed_rejects_non_list_ids(self) -> None:
        res = self.client.post("/admin/seed-demo", json={"workspace_ids": "abc"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "INVALID_BODY")

    def test_seed_without_ids(self) -> None:
        with patch.dict(os.environ, {"DEMO_WORKSPACE_IDS": ""}):
            res = self.client.post("/admin/seed-demo", json={})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "DEMO_WORKSPACES_MISSING")

    def test_seed_uses_env_ids(self) -> None:
        workspace_id = str(uuid.uuid4())
        with patch.dict(os.environ, {"DEMO_WORKSPACE_IDS": f" {workspace_id} ,"}):
            res = self.client.post("/admin/seed-demo")
        self.assertEqual([r["workspace_id"] for r in res.json()["results"]], [workspace_id])


def _bearer(user_id: str, workspace_id: str, role: str = "member") -> dict:
    token = jwt.encode({"sub": user_id, "workspaceId": workspace_id, "role": role}, "api-test-secret", algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@patch.dict(os.environ, {"CRM_DISABLE_AUTH": "0"})
class TestWorkspaceAccessApi(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(main.app)
        self.own_workspace = str(uuid.uuid4())
        self.other_workspace = str(uuid.uuid4())
        self.own_account = main.connected_accounts.create(resolve_tenant(self.own_workspace), {"handle": "me@corp.dev"})
        self.other_ctx = resolve_tenant(self.other_workspace)
        self.other_account = main.connected_accounts.create(self.other_ctx, {"handle": "victim@corp.dev"})
        main.connected_accounts.set_sync_cursor(self.other_ctx, self.other_account["id"], "500")

    def test_token_workspace_is_accessible(self) -> None:
        res = self.client.get(f"/connected-accounts/{self.own_account['id']}", headers=_bearer("u1", self.own_workspace))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["connected_account"]["handle"], "me@corp.dev")

    def test_header_cannot_switch_to_foreign_workspace(self) -> None:
        headers = {**_bearer("u1", self.own_workspace), "X-Workspace-Id": self.other_workspace}
        res = self.client.get(f"/connected-accounts/{self.other_account['id']}", headers=headers)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["errors"][0]["code"], "WORKSPACE_FORBIDDEN")
        res = self.client.post(
            f"/connected-accounts/{self.other_account['id']}/sync-cursor",
            json={"history_id": "1", "only_if_newer": False},
            headers=headers,
        )
        self.assertEqual(res.status_code, 403)
        stored = main.connected_accounts.get_by_id_or_fail(self.other_ctx, self.other_account["id"])
        self.assertEqual(stored["last_sync_history_id"], "500")

    def test_header_allowed_for_members(self) -> None:
        main.core_store.seed_workspace(self.other_workspace)
        member_id = demo_id(self.other_workspace, "user", "jony.ive@apple.dev")
        headers = {**_bearer(member_id, self.own_workspace), "X-Workspace-Id": self.other_workspace}
        res = self.client.get(f"/connected-accounts/{self.other_account['id']}", headers=headers)
        self.assertEqual(res.status_code, 200)

    def test_admin_of_other_workspace_cannot_reseed(self) -> None:
        default_ctx = resolve_tenant(main.DEFAULT_WORKSPACE_ID)
        account = main.connected_accounts.create(default_ctx, {"handle": "keep@apple.dev"})
        with patch.dict(os.environ, {"DEMO_WORKSPACE_IDS": ""}):
            res = self.client.post(
                "/admin/seed-demo",
                json={"workspace_ids": [main.DEFAULT_WORKSPACE_ID]},
                headers=_bearer("u1", self.own_workspace, role="admin"),
            )
        self.assertEqual(res.status_code, 403)
        self.assertEqual(main.connected_accounts.get_by_id_or_fail(default_ctx, account["id"])["handle"], "keep@apple.dev")

    def test_member_cannot_reseed(self) -> None:
        with patch.dict(os.environ, {"DEMO_WORKSPACE_IDS": self.own_workspace}):
            res = self.client.post("/admin/seed-demo", headers=_bearer("u1", self.own_workspace))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["errors"][0]["code"], "FORBIDDEN")


if __name__ == "__main__":
    unittest.main()
