"""
Shared fixtures: a throwaway SQLite database per test, the MockPay gateway,
a recording notifier and an httpx client wired to the FastAPI app.
"""
from contextlib import asynccontextmanager
from typing import List

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import text

from slotbill.gateway import MockPay
from slotbill.helpers import now_ts, to_minor
from slotbill.infra.sql import GatedAsyncSession, make_async_engine
from slotbill.model.orm import Base
from slotbill.notify import Notifier, PaymentNotice

MOCK_TEST_SECRET = "test-secret"


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[PaymentNotice] = []

    async def send_payment_confirmation(self, notice: PaymentNotice) -> bool:
        if self.fail:
            raise RuntimeError("mail service down")
        self.sent.append(notice)
        return True


@pytest_asyncio.fixture
async def database(tmp_path):
    engine, sessions, gated = make_async_engine(
        f"sqlite:///{tmp_path / 'slotbill-test.db'}"
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield sessions, gated
    await engine.dispose()


@pytest.fixture
def open_db(database):
    """Factory for independent sessions, one per concurrent task."""
    sessions, gated = database

    @asynccontextmanager
    async def _open():
        async with sessions() as session:
            yield GatedAsyncSession(session=session, gated=gated)

    return _open


@pytest_asyncio.fixture
async def db(open_db):
    async with open_db() as gdb:
        yield gdb


@pytest.fixture
def gateway():
    return MockPay(MOCK_TEST_SECRET)


@pytest.fixture
def notifier():
    return RecordingNotifier()


# ----------------------------
# seed helpers
# ----------------------------
async def seed_company(db, *, name="Acme", email="acme@example.com",
                       max_admins=5, max_members=10) -> int:
    async with db.session.begin():
        return (await db.session.execute(text("""
            INSERT INTO companies(name, email, max_admins, max_members,
                                  created_at)
            VALUES (:n, :e, :a, :m, :c) RETURNING id
        """), {"n": name, "e": email, "a": max_admins, "m": max_members,
               "c": now_ts()})).scalar_one()


async def seed_user(db, *, company_id, role, email) -> int:
    async with db.session.begin():
        return (await db.session.execute(text("""
            INSERT INTO users(company_id, role, email)
            VALUES (:c, :r, :e) RETURNING id
        """), {"c": company_id, "r": role, "e": email})).scalar_one()


async def seed_price(db, slot_type, price, currency="INR") -> None:
    async with db.session.begin():
        await db.session.execute(text("""
            INSERT INTO slot_pricing(slot_type, price_per_unit_minor,
                                     currency, updated_at)
            VALUES (:t, :p, :c, :u)
        """), {"t": slot_type, "p": to_minor(price), "c": currency,
               "u": now_ts()})


async def insert_pending_payment(db, *, company_id, slot_type, quantity,
                                 amount, currency="INR", payment_id=None,
                                 intent_id=None) -> int:
    cols = "company_id, slot_type, quantity, amount_minor, currency, " \
           "status, payment_method, gateway_intent_id, notification_sent, " \
           "created_at"
    vals = ":c, :t, :q, :a, :cur, 'pending', 'mock', :pi, :ns, :now"
    params = {"c": company_id, "t": slot_type, "q": quantity,
              "a": to_minor(amount), "cur": currency, "pi": intent_id,
              "ns": False, "now": now_ts()}
    if payment_id is not None:
        cols = "id, " + cols
        vals = ":id, " + vals
        params["id"] = payment_id
    async with db.session.begin():
        return (await db.session.execute(text(
            f"INSERT INTO company_payments({cols}) VALUES ({vals}) "
            "RETURNING id"
        ), params)).scalar_one()


async def company_counters(db, company_id):
    async with db.session.begin():
        row = (await db.session.execute(text(
            "SELECT max_admins, max_members FROM companies WHERE id = :id"
        ), {"id": company_id})).first()
    return int(row[0]), int(row[1])


async def payment_row(db, payment_id):
    async with db.session.begin():
        return (await db.session.execute(text(
            "SELECT * FROM company_payments WHERE id = :id"
        ), {"id": payment_id})).mappings().first()


@pytest_asyncio.fixture
async def tenant(db):
    """Company with maxAdmins=5/maxMembers=10 plus its users."""
    cid = await seed_company(db)
    return {
        "company_id": cid,
        "admin_id": await seed_user(db, company_id=cid, role="company_admin",
                                    email="boss@acme.example.com"),
        "member_id": await seed_user(db, company_id=cid,
                                     role="company_member",
                                     email="dev@acme.example.com"),
        "super_id": await seed_user(db, company_id=None, role="super_admin",
                                    email="root@worklogix.example.com"),
    }


@pytest_asyncio.fixture
async def client(database, gateway, notifier):
    from slotbill.server import app

    sessions, gated = database
    app.state.sessions = sessions
    app.state.gated = gated
    app.state.gateway = gateway
    app.state.notifier = notifier
    app.state.http = None

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport,
                                 base_url="http://test") as c:
        yield c


def as_user(user_id) -> dict:
    return {"x-user-id": str(user_id)}
