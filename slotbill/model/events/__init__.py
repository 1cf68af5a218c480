from typing import Optional
import redis.asyncio as redis

from ...config import EVENTS_BACKEND as BACKEND, EVENT_TTL_SECONDS
from ...infra.sql import GatedAsyncSession

if BACKEND == "redis":
    from ._redis import WebhookEventStore as _WebhookEventStore
else:
    from ._postgres import WebhookEventStore as _WebhookEventStore


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, db: Optional[GatedAsyncSession] = None,
              r: Optional[redis.Redis] = None,
              ttl_seconds: int = EVENT_TTL_SECONDS):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError(
                "WebhookEventStore(redis) requires r=redis.Redis"
            )
        return _WebhookEventStore(r=r, ttl_seconds=ttl_seconds)
    if db is None:
        raise RuntimeError(
            "WebhookEventStore(pg) requires db=GatedAsyncSession"
        )
    return _WebhookEventStore(db=db)


WebhookEventStore = _WebhookEventStore
__all__ = ["WebhookEventStore", "new_store", "BACKEND"]
