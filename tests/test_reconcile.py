from __future__ import annotations

import asyncio
import re

import pytest

from slotbill import billing
from slotbill.errors import MetadataTampering, RecordNotFound
from slotbill.model import payments
from slotbill.model.events import new_store
from slotbill.model.ledger import SlotDelta

from conftest import (
    company_counters, insert_pending_payment, payment_row, seed_company,
)


async def _intent_for(gateway, payment_id, company_id, slot_type, quantity,
                      amount_minor, currency="INR"):
    return await gateway.create_intent(amount_minor, currency, {
        "paymentRecordId": str(payment_id),
        "companyId": str(company_id),
        "slotType": slot_type,
        "quantity": str(quantity),
    })


async def test_complete_twice_credits_once(db, tenant):
    cid = tenant["company_id"]
    pid = await insert_pending_payment(
        db, company_id=cid, slot_type="admin", quantity=2, amount=1000
    )

    first = await payments.complete_payment_and_credit_slots(
        db, pid, cid, "WL-RCPT-20260101-000001", "pi_1", SlotDelta(admins=2)
    )
    second = await payments.complete_payment_and_credit_slots(
        db, pid, cid, "WL-RCPT-20260101-000001", "pi_1", SlotDelta(admins=2)
    )

    assert first is not None and first.is_paid
    assert second is None
    assert await company_counters(db, cid) == (7, 10)


async def test_missing_company_rolls_back_status_change(db, tenant):
    cid = tenant["company_id"]
    pid = await insert_pending_payment(
        db, company_id=cid, slot_type="member", quantity=1, amount=100
    )

    with pytest.raises(RecordNotFound):
        await payments.complete_payment_and_credit_slots(
            db, pid, 999_999, "R-1", "pi_x", SlotDelta(members=1)
        )

    row = await payment_row(db, pid)
    assert row["status"] == "pending"
    assert row["receipt_number"] is None


async def test_reconcile_is_idempotent(db, tenant, gateway):
    cid = tenant["company_id"]
    pid = await insert_pending_payment(
        db, company_id=cid, slot_type="member", quantity=2, amount=1000
    )
    intent = await _intent_for(gateway, pid, cid, "member", 2, 100000)
    await payments.set_gateway_intent(db, pid, intent.id)

    r1 = await billing.reconcile(db, intent, pid, source="test")
    r2 = await billing.reconcile(db, intent, pid, source="test")

    assert r1.already_processed is False
    assert r2.already_processed is True
    assert r1.receipt_number == r2.receipt_number
    assert r2.payment.gateway_transaction_id == intent.id
    assert await company_counters(db, cid) == (5, 12)


async def test_webhook_first_scenario(db, tenant, gateway):
    cid = tenant["company_id"]
    pid = await insert_pending_payment(
        db, company_id=cid, slot_type="member", quantity=2, amount=1000,
        payment_id=42,
    )
    intent = await _intent_for(gateway, pid, cid, "member", 2, 100000)
    await payments.set_gateway_intent(db, pid, intent.id)

    payload, headers = gateway.succeed(intent.id)
    outcome = await billing.handle_webhook(
        db, gateway, new_store(db=db), payload, headers
    )

    assert outcome.result is not None
    assert outcome.result.already_processed is False
    assert re.fullmatch(r"WL-RCPT-\d{8}-000042",
                        outcome.result.receipt_number)
    row = await payment_row(db, 42)
    assert row["status"] == "paid"
    assert row["receipt_number"] == outcome.result.receipt_number
    assert await company_counters(db, cid) == (5, 12)


async def test_duplicate_webhook_delivery_is_absorbed(db, tenant, gateway):
    cid = tenant["company_id"]
    pid = await insert_pending_payment(
        db, company_id=cid, slot_type="admin", quantity=1, amount=500
    )
    intent = await _intent_for(gateway, pid, cid, "admin", 1, 50000)
    await payments.set_gateway_intent(db, pid, intent.id)
    events = new_store(db=db)

    payload, headers = gateway.succeed(intent.id)
    first = await billing.handle_webhook(db, gateway, events, payload,
                                         headers)
    replay = await billing.handle_webhook(db, gateway, events, payload,
                                          headers)
    # the gateway may also resend under a fresh event id
    payload2, headers2 = gateway.succeed(intent.id)
    resend = await billing.handle_webhook(db, gateway, events, payload2,
                                          headers2)

    assert first.as_dict()["alreadyProcessed"] is False
    assert replay.as_dict()["alreadyProcessed"] is True
    assert resend.result.already_processed is True
    assert resend.result.receipt_number == first.result.receipt_number
    assert await company_counters(db, cid) == (6, 10)


async def test_metadata_mismatch_changes_nothing(db, tenant, gateway):
    cid = tenant["company_id"]
    pid = await insert_pending_payment(
        db, company_id=cid, slot_type="admin", quantity=2, amount=1000
    )
    other = await insert_pending_payment(
        db, company_id=cid, slot_type="admin", quantity=2, amount=1000
    )
    intent = await _intent_for(gateway, pid, cid, "admin", 2, 100000)

    with pytest.raises(MetadataTampering):
        await billing.reconcile(db, intent, other, source="test")

    assert (await payment_row(db, pid))["status"] == "pending"
    assert (await payment_row(db, other))["status"] == "pending"
    assert await company_counters(db, cid) == (5, 10)


async def test_gateway_amount_mismatch_is_tampering(db, tenant, gateway):
    cid = tenant["company_id"]
    pid = await insert_pending_payment(
        db, company_id=cid, slot_type="member", quantity=3, amount=300
    )
    intent = await _intent_for(gateway, pid, cid, "member", 3, 100)

    with pytest.raises(MetadataTampering):
        await billing.reconcile(db, intent, pid, source="test")
    assert await company_counters(db, cid) == (5, 10)


async def test_foreign_company_metadata_is_tampering(db, tenant, gateway):
    cid = tenant["company_id"]
    other_cid = await seed_company(db, name="Other", email="o@example.com")
    pid = await insert_pending_payment(
        db, company_id=cid, slot_type="admin", quantity=1, amount=500
    )
    intent = await _intent_for(gateway, pid, other_cid, "admin", 1, 50000)

    with pytest.raises(MetadataTampering):
        await billing.reconcile(db, intent, pid, source="test")


async def test_racing_reconciliations_settle_once(open_db, db, tenant,
                                                  gateway):
    cid = tenant["company_id"]
    pid = await insert_pending_payment(
        db, company_id=cid, slot_type="admin", quantity=3, amount=1500
    )
    intent = await _intent_for(gateway, pid, cid, "admin", 3, 150000)
    await payments.set_gateway_intent(db, pid, intent.id)

    async def attempt(source):
        async with open_db() as own:
            return await billing.reconcile(own, intent, pid, source=source)

    results = await asyncio.gather(*(attempt(f"t{i}") for i in range(6)))

    winners = [r for r in results if not r.already_processed]
    assert len(winners) == 1
    assert len({r.receipt_number for r in results}) == 1
    assert await company_counters(db, cid) == (8, 10)


async def test_concurrent_purchases_same_company_are_additive(
    open_db, db, tenant, gateway
):
    cid = tenant["company_id"]
    intents = []
    for _ in range(2):
        pid = await insert_pending_payment(
            db, company_id=cid, slot_type="admin", quantity=2, amount=1000
        )
        intent = await _intent_for(gateway, pid, cid, "admin", 2, 100000)
        intents.append((pid, intent))

    async def settle(pid, intent):
        async with open_db() as own:
            return await billing.reconcile(own, intent, pid, source="test")

    results = await asyncio.gather(*(settle(p, i) for p, i in intents))

    assert all(not r.already_processed for r in results)
    assert await company_counters(db, cid) == (9, 10)


async def test_send_receipt_marks_notification(db, tenant, gateway,
                                               notifier):
    cid = tenant["company_id"]
    pid = await insert_pending_payment(
        db, company_id=cid, slot_type="member", quantity=1, amount=100
    )
    intent = await _intent_for(gateway, pid, cid, "member", 1, 10000)
    result = await billing.reconcile(db, intent, pid, source="test")

    sent = await billing.send_receipt(db, notifier, pid)

    assert sent is True
    assert notifier.sent[0].receipt_number == result.receipt_number
    assert notifier.sent[0].company_email == "acme@example.com"
    assert bool((await payment_row(db, pid))["notification_sent"]) is True


async def test_send_receipt_swallows_dispatch_failure(db, tenant, gateway):
    from conftest import RecordingNotifier

    cid = tenant["company_id"]
    pid = await insert_pending_payment(
        db, company_id=cid, slot_type="member", quantity=1, amount=100
    )
    intent = await _intent_for(gateway, pid, cid, "member", 1, 10000)
    await billing.reconcile(db, intent, pid, source="test")

    sent = await billing.send_receipt(db, RecordingNotifier(fail=True), pid)

    assert sent is False
    assert bool((await payment_row(db, pid))["notification_sent"]) is False
