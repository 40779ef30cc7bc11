"""Tear down and reseed the demo workspaces."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

logger = logging.getLogger("crm.seed")


class DemoSeedConfigError(RuntimeError):
    pass


@dataclass
class DemoSeedResult:
    workspace_id: str
    ok: bool
    error: str | None = None

    def to_dict(self) -> dict:
        return {"workspace_id": self.workspace_id, "ok": self.ok, "error": self.error}


def reseed_workspace(workspace_id: str, core_store: Any, workspace_manager: Any) -> None:
    core_store.delete_workspace(workspace_id)
    workspace_manager.delete(workspace_id)
    core_store.seed_workspace(workspace_id)
    workspace_manager.init_demo(workspace_id)


def seed_demo(
    workspace_ids: Iterable[str],
    core_store: Any,
    workspace_manager: Any,
    tx_mgr: Any,
) -> list[DemoSeedResult]:
    """Reseed every workspace in its own transaction.

    A failing workspace is rolled back and reported; the remaining ones
    are still processed.
    """
    ids = [w for w in (workspace_ids or []) if w]
    if not ids:
        raise DemoSeedConfigError("Could not get DEMO_WORKSPACE_IDS. Please specify in .env")
    results: list[DemoSeedResult] = []
    for workspace_id in ids:
        tx = tx_mgr.begin()
        try:
            reseed_workspace(workspace_id, core_store, workspace_manager)
        except Exception as exc:
            tx.rollback()
            logger.exception("demo_seed_failed workspace_id=%s", workspace_id)
            results.append(DemoSeedResult(workspace_id=workspace_id, ok=False, error=str(exc)))
            continue
        tx.commit()
        logger.info("demo_seed_ok workspace_id=%s", workspace_id)
        results.append(DemoSeedResult(workspace_id=workspace_id, ok=True))
    return results
