from __future__ import annotations
from typing import Optional
from sqlalchemy import text

from ...helpers import now_ts
from ...infra.sql import GatedAsyncSession


class WebhookEventStore:
    """Processed gateway event ids, kept in the SQL database."""

    def __init__(self, *, db: GatedAsyncSession) -> None:
        self.db = db

    async def seen(self, evt_id: Optional[str]) -> bool:
        if not evt_id:
            return False
        async with self.db.gated():
            async with self.db.session.begin():
                row = (await self.db.session.execute(text("""
                  SELECT event_id FROM webhook_events_seen
                  WHERE event_id = :k
                """), {"k": evt_id})).first()
        return row is not None

    async def mark_seen(self, evt_id: Optional[str]) -> bool:
        """True if the id was new, False if it was already recorded."""
        if not evt_id:
            return True
        async with self.db.gated():
            async with self.db.session.begin():
                row = (await self.db.session.execute(text("""
                  INSERT INTO webhook_events_seen(event_id, created_at)
                  VALUES(:k, :c)
                  ON CONFLICT (event_id) DO NOTHING
                  RETURNING event_id
                """), {"k": evt_id, "c": now_ts()})).first()
        return row is not None
