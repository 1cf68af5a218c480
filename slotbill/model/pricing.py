# model/pricing.py
"""
Pricing catalog: one price row per slot type.

Reads are done by every purchase; writes only by a super admin. The single-row
guarantee comes from the unique key on slot_type plus a native upsert.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from sqlalchemy import text

from ..errors import InvalidRequest, PricingNotConfigured
from ..helpers import (
    NON_CENT_CURRENCIES, from_minor, is_whole_cents, now_ts, to_minor,
)
from ..infra.sql import GatedAsyncSession
from .orm import SLOT_TYPES


@dataclass(frozen=True)
class PricingEntry:
    slot_type: str
    price_per_unit: Decimal
    currency: str

    @classmethod
    def from_row(cls, row) -> "PricingEntry":
        return cls(
            slot_type=row["slot_type"],
            price_per_unit=from_minor(row["price_per_unit_minor"]),
            currency=row["currency"],
        )

    def as_dict(self) -> dict:
        return {
            "slotType": self.slot_type,
            "pricePerUnit": str(self.price_per_unit),
            "currency": self.currency,
        }


async def get_price(db: GatedAsyncSession, slot_type: str) -> PricingEntry:
    async with db.gated():
        async with db.session.begin():
            row = (await db.session.execute(text("""
                SELECT slot_type, price_per_unit_minor, currency
                FROM slot_pricing WHERE slot_type = :t
            """), {"t": slot_type})).mappings().first()
    if row is None:
        raise PricingNotConfigured(
            f"Pricing not found for {slot_type} slots"
        )
    return PricingEntry.from_row(row)


async def list_prices(db: GatedAsyncSession) -> List[PricingEntry]:
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(text("""
                SELECT slot_type, price_per_unit_minor, currency
                FROM slot_pricing ORDER BY slot_type
            """))).mappings().all()
    return [PricingEntry.from_row(r) for r in rows]


async def upsert_price(
    db: GatedAsyncSession, entry: PricingEntry
) -> PricingEntry:
    if entry.slot_type not in SLOT_TYPES:
        raise InvalidRequest(f"unknown slot type: {entry.slot_type}")
    if entry.price_per_unit < 0:
        raise InvalidRequest("Price must be non-negative")
    if not is_whole_cents(entry.price_per_unit):
        raise InvalidRequest("Price must have at most two decimal places")

    currency = entry.currency.upper()
    if currency in NON_CENT_CURRENCIES:
        raise InvalidRequest(
            f"Currency {currency} does not use two decimal places"
        )

    async with db.gated():
        async with db.session.begin():
            row = (await db.session.execute(text("""
                INSERT INTO slot_pricing(
                    slot_type, price_per_unit_minor, currency, updated_at
                ) VALUES (:t, :p, :c, :u)
                ON CONFLICT (slot_type) DO UPDATE SET
                    price_per_unit_minor = EXCLUDED.price_per_unit_minor,
                    currency = EXCLUDED.currency,
                    updated_at = EXCLUDED.updated_at
                RETURNING slot_type, price_per_unit_minor, currency
            """), {
                "t": entry.slot_type,
                "p": to_minor(entry.price_per_unit),
                "c": currency,
                "u": now_ts(),
            })).mappings().first()
    return PricingEntry.from_row(row)
