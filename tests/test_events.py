from slotbill.model.events import _redis
from slotbill.model.events._postgres import WebhookEventStore


class FakeRedis:
    """Just the two commands the event store uses."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def exists(self, key):
        return int(key in self.data)

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True


async def test_sql_event_store(db):
    events = WebhookEventStore(db=db)

    assert await events.seen("evt_1") is False
    assert await events.mark_seen("evt_1") is True
    assert await events.mark_seen("evt_1") is False
    assert await events.seen("evt_1") is True
    assert await events.seen(None) is False


async def test_redis_event_store():
    r = FakeRedis()
    events = _redis.WebhookEventStore(r, ttl_seconds=60)

    assert await events.seen("evt_1") is False
    assert await events.mark_seen("evt_1") is True
    assert await events.mark_seen("evt_1") is False
    assert await events.seen("evt_1") is True
    assert r.ttls[_redis.k_evt("evt_1")] == 60
