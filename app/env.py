from __future__ import annotations

import os
from pathlib import Path


def load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


def use_db() -> bool:
    return os.getenv("USE_DB", "").strip() == "1"


def get_demo_workspace_ids() -> list[str]:
    raw = os.getenv("DEMO_WORKSPACE_IDS", "")
    return [item.strip() for item in raw.split(",") if item.strip()]
