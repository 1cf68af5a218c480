# model/ledger.py
"""
Company slot ledger: the max_admins / max_members counters.

Counters only ever move by relative increments (`col = col + :delta`) so two
payments for the same company settling at the same time cannot lose each
other's credit. Nothing here writes an absolute value.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InvalidRequest, RecordNotFound
from ..infra.sql import GatedAsyncSession
from .orm import SLOT_ADMIN, SLOT_MEMBER


@dataclass(frozen=True)
class SlotDelta:
    admins: int = 0
    members: int = 0

    @classmethod
    def for_purchase(cls, slot_type: str, quantity: int) -> "SlotDelta":
        if slot_type == SLOT_ADMIN:
            return cls(admins=int(quantity))
        if slot_type == SLOT_MEMBER:
            return cls(members=int(quantity))
        raise InvalidRequest(f"unknown slot type: {slot_type}")


# UN-GATED: runs inside the caller's transaction
async def credit_slots(
    session: AsyncSession, company_id: int, delta: SlotDelta
) -> None:
    if delta.admins < 0 or delta.members < 0:
        raise InvalidRequest("slot credits must be non-negative deltas")

    row = (await session.execute(text("""
        UPDATE companies
        SET max_admins = max_admins + :da,
            max_members = max_members + :dm
        WHERE id = :id
        RETURNING id
    """), {
        "id": company_id, "da": delta.admins, "dm": delta.members,
    })).first()
    if row is None:
        raise RecordNotFound(f"Company {company_id} not found")


async def get_slots(db: GatedAsyncSession, company_id: int) -> Dict[str, int]:
    async with db.gated():
        async with db.session.begin():
            row = (await db.session.execute(text("""
                SELECT id, max_admins, max_members FROM companies
                WHERE id = :id
            """), {"id": company_id})).mappings().first()
    if row is None:
        raise RecordNotFound(f"Company {company_id} not found")
    return {
        "companyId": int(row["id"]),
        "maxAdmins": int(row["max_admins"]),
        "maxMembers": int(row["max_members"]),
    }
