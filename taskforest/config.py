from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from taskforest.store.interface import MAX_GROUP_OPS


@dataclass(slots=True)
class ForestConfig:
    redis_url: str
    key_prefix: str
    owner_id: str | None
    group_size: int
    import_workers: int


def _int_setting(e: dict[str, Any], name: str, default: int) -> int:
    raw = (e.get(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def load_config(env: dict[str, str] | None = None) -> ForestConfig:
    e: dict[str, Any] = dict(os.environ)
    if env:
        e.update(env)
    # Larger groups would exceed the store's atomic commit ceiling
    group_size = min(MAX_GROUP_OPS, max(1, _int_setting(e, "IMPORT_GROUP_SIZE", MAX_GROUP_OPS)))
    return ForestConfig(
        redis_url=e.get("REDIS_URL") or "redis://localhost:6379/0",
        key_prefix=(e.get("TASK_STORE_PREFIX") or "tasks").strip() or "tasks",
        owner_id=(e.get("TASK_OWNER_ID") or "").strip() or None,
        group_size=group_size,
        import_workers=max(1, _int_setting(e, "IMPORT_MAX_WORKERS", 4)),
    )


__all__ = ["ForestConfig", "load_config"]
