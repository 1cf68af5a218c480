from decimal import Decimal

import pytest
from sqlalchemy import text

from slotbill.errors import InvalidRequest, PricingNotConfigured
from slotbill.model import pricing
from slotbill.model.pricing import PricingEntry


async def test_upsert_keeps_one_row_per_slot_type(db):
    await pricing.upsert_price(db, PricingEntry("admin", Decimal("500"), "inr"))
    updated = await pricing.upsert_price(
        db, PricingEntry("admin", Decimal("650.5"), "INR")
    )

    assert updated == PricingEntry("admin", Decimal("650.50"), "INR")
    async with db.session.begin():
        rows = (await db.session.execute(text(
            "SELECT slot_type, price_per_unit_minor FROM slot_pricing"
        ))).all()
    assert [tuple(r) for r in rows] == [("admin", 65050)]


async def test_get_price_for_unpriced_slot_type(db):
    await pricing.upsert_price(db, PricingEntry("admin", Decimal("500"), "INR"))

    assert (await pricing.get_price(db, "admin")).price_per_unit == \
        Decimal("500.00")
    with pytest.raises(PricingNotConfigured):
        await pricing.get_price(db, "member")


@pytest.mark.parametrize("entry", [
    PricingEntry("admin", Decimal("-1"), "INR"),
    PricingEntry("owner", Decimal("10"), "INR"),
])
async def test_upsert_rejects_bad_entries(db, entry):
    with pytest.raises(InvalidRequest):
        await pricing.upsert_price(db, entry)
    assert await pricing.list_prices(db) == []


async def test_sub_cent_price_is_refused_not_rounded(db):
    with pytest.raises(InvalidRequest):
        await pricing.upsert_price(
            db, PricingEntry("admin", Decimal("0.335"), "INR")
        )
    with pytest.raises(PricingNotConfigured):
        await pricing.get_price(db, "admin")

    kept = await pricing.upsert_price(
        db, PricingEntry("admin", Decimal("0.33"), "INR")
    )
    assert kept.price_per_unit * 3 == Decimal("0.99")


@pytest.mark.parametrize("currency", ["JPY", "krw", "KWD"])
async def test_currencies_without_cents_are_refused(db, currency):
    with pytest.raises(InvalidRequest):
        await pricing.upsert_price(
            db, PricingEntry("member", Decimal("100"), currency)
        )
    assert await pricing.list_prices(db) == []
