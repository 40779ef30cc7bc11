import os
import random
import sys
import unittest
import uuid

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from cryptography.fernet import Fernet

from app.connected_accounts import ConnectedAccountNotFound, public_view
from app.secrets import TokenCipher
from app.stores import MemoryConnectedAccountStore
from app.tenancy import NotFoundError, resolve_tenant
from tenantkit.sync_cursor import max_cursor


class TestMemoryConnectedAccountStore(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryConnectedAccountStore()
        self.t1 = resolve_tenant(str(uuid.uuid4()))
        self.t2 = resolve_tenant(str(uuid.uuid4()))
        self.shared_id = str(uuid.uuid4())
        self.store.create(self.t1, {"id": self.shared_id, "handle": "tim@apple.dev", "access_token": "t1-token"})
        self.store.create(self.t2, {"id": self.shared_id, "handle": "phil@apple.dev", "access_token": "t2-token"})

    def test_tenant_isolation_on_reads(self) -> None:
        self.assertEqual(self.store.get_by_id_or_fail(self.t1, self.shared_id)["handle"], "tim@apple.dev")
        self.assertEqual(self.store.get_by_id_or_fail(self.t2, self.shared_id)["handle"], "phil@apple.dev")
        self.assertEqual([a["handle"] for a in self.store.list_by_provider(self.t1, "google")], ["tim@apple.dev"])

    def test_tenant_isolation_on_writes(self) -> None:
        self.store.set_sync_cursor(self.t1, self.shared_id, "500")
        self.store.set_access_token(self.t1, self.shared_id, "rotated")
        other = self.store.get_by_id_or_fail(self.t2, self.shared_id)
        self.assertEqual(other["last_sync_history_id"], "")
        self.assertEqual(other["access_token"], "t2-token")

    def test_get_by_id_or_fail_missing(self) -> None:
        with self.assertRaises(ConnectedAccountNotFound) as ctx:
            self.store.get_by_id_or_fail(self.t1, str(uuid.uuid4()))
        self.assertIsInstance(ctx.exception, NotFoundError)

    def test_unknown_tenant_sees_nothing(self) -> None:
        t3 = resolve_tenant(str(uuid.uuid4()))
        with self.assertRaises(ConnectedAccountNotFound):
            self.store.get_by_id_or_fail(t3, self.shared_id)

    def test_list_by_ids(self) -> None:
        self.assertEqual(self.store.list_by_ids(self.t1, []), [])
        self.assertEqual(self.store.list_by_ids(self.t1, [str(uuid.uuid4())]), [])
        rows = self.store.list_by_ids(self.t1, [self.shared_id, self.shared_id, "missing"])
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["id"], self.shared_id)

    def test_list_by_provider_filters(self) -> None:
        self.store.create(self.t1, {"handle": "ms@apple.dev", "provider": "microsoft"})
        self.assertEqual(len(self.store.list_by_provider(self.t1, "google")), 1)
        self.assertEqual(len(self.store.list_by_provider(self.t1, "microsoft")), 1)

    def test_cursor_scenario(self) -> None:
        self.store.set_sync_cursor(self.t1, self.shared_id, "100")
        self.assertFalse(self.store.set_sync_cursor_if_newer(self.t1, self.shared_id, "50"))
        self.assertEqual(self.store.get_by_id_or_fail(self.t1, self.shared_id)["last_sync_history_id"], "100")
        self.assertTrue(self.store.set_sync_cursor_if_newer(self.t1, self.shared_id, "150"))
        self.assertEqual(self.store.get_by_id_or_fail(self.t1, self.shared_id)["last_sync_history_id"], "150")

    def test_empty_cursor_always_applies(self) -> None:
        self.assertTrue(self.store.set_sync_cursor_if_newer(self.t1, self.shared_id, "0"))
        self.assertEqual(self.store.get_by_id_or_fail(self.t1, self.shared_id)["last_sync_history_id"], "0")

    def test_clear_then_apply(self) -> None:
        self.store.set_sync_cursor(self.t1, self.shared_id, "900")
        self.store.clear_sync_cursor(self.t1, self.shared_id)
        self.assertEqual(self.store.get_by_id_or_fail(self.t1, self.shared_id)["last_sync_history_id"], "")
        self.assertTrue(self.store.set_sync_cursor_if_newer(self.t1, self.shared_id, "3"))

    def test_unconditional_set_can_move_backward(self) -> None:
        self.store.set_sync_cursor(self.t1, self.shared_id, "900")
        self.store.set_sync_cursor(self.t1, self.shared_id, "10")
        self.assertEqual(self.store.get_by_id_or_fail(self.t1, self.shared_id)["last_sync_history_id"], "10")

    def test_conditional_update_is_monotonic(self) -> None:
        rng = random.Random(7)
        initial = "1000"
        self.store.set_sync_cursor(self.t1, self.shared_id, initial)
        seen = [initial]
        for _ in range(200):
            cursor = str(rng.randint(0, 5000))
            before = self.store.get_by_id_or_fail(self.t1, self.shared_id)["last_sync_history_id"]
            self.store.set_sync_cursor_if_newer(self.t1, self.shared_id, cursor)
            after = self.store.get_by_id_or_fail(self.t1, self.shared_id)["last_sync_history_id"]
            self.assertGreaterEqual(int(after), int(before))
            seen.append(cursor)
        self.assertEqual(self.store.get_by_id_or_fail(self.t1, self.shared_id)["last_sync_history_id"], max_cursor(seen))

    def test_missing_account_is_silent_noop(self) -> None:
        missing = str(uuid.uuid4())
        self.assertFalse(self.store.set_sync_cursor_if_newer(self.t1, missing, "5"))
        self.store.set_sync_cursor(self.t1, missing, "5")
        self.store.clear_sync_cursor(self.t1, missing)
        self.store.set_access_token(self.t1, missing, "x")
        self.assertEqual(self.store.list_by_ids(self.t1, [missing]), [])

    def test_invalid_cursor_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.store.set_sync_cursor_if_newer(self.t1, self.shared_id, "abc")

    def test_requires_tenant_context(self) -> None:
        with self.assertRaises(TypeError):
            self.store.list_by_provider(self.t1.workspace_id, "google")

    def test_public_view_hides_tokens(self) -> None:
        view = public_view(self.store.get_by_id_or_fail(self.t1, self.shared_id))
        self.assertNotIn("access_token", view)
        self.assertNotIn("refresh_token", view)
        self.assertEqual(view["handle"], "tim@apple.dev")


class TestEncryptedTokens(unittest.TestCase):
    def test_tokens_encrypted_at_rest(self) -> None:
        cipher = TokenCipher(Fernet.generate_key().decode("utf-8"))
        store = MemoryConnectedAccountStore(cipher=cipher)
        ctx = resolve_tenant(str(uuid.uuid4()))
        account = store.create(ctx, {"handle": "tim@apple.dev", "access_token": "secret-1"})
        raw = store._rows[ctx.schema][account["id"]]
        self.assertTrue(raw["access_token"].startswith("enc:"))
        self.assertNotIn("secret-1", raw["access_token"])
        self.assertEqual(store.get_by_id_or_fail(ctx, account["id"])["access_token"], "secret-1")
        store.set_access_token(ctx, account["id"], "secret-2")
        self.assertEqual(store.get_by_id_or_fail(ctx, account["id"])["access_token"], "secret-2")


if __name__ == "__main__":
    unittest.main()
