from __future__ import annotations
from typing import Optional
import redis.asyncio as redis


def k_evt(evt_id: str) -> str: return f"whevt:{evt_id}"


class WebhookEventStore:
    """Processed gateway event ids, kept in Redis with a TTL."""

    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def seen(self, evt_id: Optional[str]) -> bool:
        if not evt_id:
            return False
        return bool(await self.r.exists(k_evt(evt_id)))

    async def mark_seen(self, evt_id: Optional[str]) -> bool:
        if not evt_id:
            return True
        ok = await self.r.set(k_evt(evt_id), "1", nx=True, ex=self.ttl)
        return bool(ok)
