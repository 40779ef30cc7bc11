"""Administrative commands: ``python -m app.commands <command>``."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.env import get_demo_workspace_ids, load_env_file

load_env_file(ROOT / "app" / ".env")

from app.db import DbTxManager
from app.demo_seed import DemoSeedConfigError, seed_demo
from app.stores_db import DbWorkspaceManager, bootstrap_metadata_schema
from app.workspaces import DbCoreWorkspaceStore, bootstrap_core_schema

logger = logging.getLogger("crm.commands")


def _cmd_bootstrap(args: argparse.Namespace) -> int:
    bootstrap_core_schema()
    bootstrap_metadata_schema()
    logger.info("bootstrap_ok")
    return 0


def _cmd_seed_demo(args: argparse.Namespace) -> int:
    workspace_ids = args.workspace_id or get_demo_workspace_ids()
    try:
        results = seed_demo(workspace_ids, DbCoreWorkspaceStore(), DbWorkspaceManager(), DbTxManager())
    except DemoSeedConfigError as exc:
        logger.error("demo_seed_config_error error=%s", exc)
        return 2
    print(json.dumps([r.to_dict() for r in results], indent=2))
    failed = [r for r in results if not r.ok]
    if failed:
        logger.warning("demo_seed_partial failed=%s total=%s", len(failed), len(results))
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crm", description="CRM administrative commands")
    sub = parser.add_subparsers(dest="command", required=True)

    bootstrap = sub.add_parser("bootstrap", help="Create the core and metadata schemas")
    bootstrap.set_defaults(func=_cmd_bootstrap)

    seed = sub.add_parser("seed-demo", help="Delete and reseed the demo workspaces")
    seed.add_argument(
        "--workspace-id",
        action="append",
        help="Workspace to reseed (repeatable); defaults to DEMO_WORKSPACE_IDS",
    )
    seed.set_defaults(func=_cmd_seed_demo)
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO)
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
