from __future__ import annotations

from taskforest.config import load_config
from taskforest.store.redis_store import RedisTaskStore

from .app import create_app

_config = load_config()
_store = RedisTaskStore(url=_config.redis_url, key_prefix=_config.key_prefix)
app = create_app(
    _store, group_size=_config.group_size, import_workers=_config.import_workers
)
