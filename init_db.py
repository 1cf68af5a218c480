import asyncio
import os
from decimal import Decimal

from sqlalchemy import text

from slotbill.config import DATABASE_URL, DEFAULT_CURRENCY
from slotbill.helpers import now_ts
from slotbill.infra.sql import GatedAsyncSession, make_async_engine
from slotbill.model import pricing
from slotbill.model.orm import Base
from slotbill.model.pricing import PricingEntry

# Config
AdminSlotPrice = Decimal(os.getenv("ADMIN_SLOT_PRICE", "500"))
MemberSlotPrice = Decimal(os.getenv("MEMBER_SLOT_PRICE", "100"))

DemoCompany = {"name": "Demo Company", "email": "demo@example.com",
               "max_admins": 1, "max_members": 10}
SuperAdminEmail = os.getenv("SUPER_ADMIN_EMAIL", "superadmin@worklogix.com")


async def create_schema(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print('✅ schema existing / created')


async def seed_pricing(db: GatedAsyncSession):
    for slot_type, price in (("admin", AdminSlotPrice),
                             ("member", MemberSlotPrice)):
        entry = await pricing.upsert_price(db, PricingEntry(
            slot_type=slot_type, price_per_unit=price,
            currency=DEFAULT_CURRENCY,
        ))
        print(f'✅ pricing {entry.as_dict()}')


async def seed_demo_tenant(db: GatedAsyncSession):
    async with db.gated():
        async with db.session.begin():
            await db.session.execute(text("""
                INSERT INTO companies(name, email, max_admins, max_members,
                                      created_at)
                VALUES (:name, :email, :max_admins, :max_members, :c)
                ON CONFLICT (email) DO NOTHING
            """), {**DemoCompany, "c": now_ts()})
            cid = (await db.session.execute(text(
                "SELECT id FROM companies WHERE email = :e"
            ), {"e": DemoCompany["email"]})).scalar_one()
            await db.session.execute(text("""
                INSERT INTO users(company_id, role, email) VALUES
                    (NULL, 'super_admin', :sa),
                    (:cid, 'company_admin', :ca)
                ON CONFLICT (email) DO NOTHING
            """), {"sa": SuperAdminEmail, "cid": cid,
                   "ca": f"admin@{DemoCompany['email'].split('@')[1]}"})
    print(f'✅ demo company {cid} present / created')


async def main():
    engine, sessions, gated = make_async_engine(DATABASE_URL)
    try:
        await create_schema(engine)
        async with sessions() as session:
            db = GatedAsyncSession(session=session, gated=gated)
            await seed_pricing(db)
            if os.getenv("SEED_DEMO", "1") == "1":
                await seed_demo_tenant(db)
    finally:
        await engine.dispose()


if __name__ == '__main__':
    asyncio.run(main())
