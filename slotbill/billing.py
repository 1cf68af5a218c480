"""
Slot purchase and payment reconciliation.

Two independent triggers settle a payment: the gateway webhook and the
client's verification call after checkout. They race freely. Both end up in
`reconcile()`, which correlates the gateway intent with the stored record and
then relies on `complete_payment_and_credit_slots` (a status-guarded update)
to apply the slot credit exactly once. The loser of the race, and any replay,
gets `already_processed=True` together with the receipt the winner persisted.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from .config import RECEIPT_PREFIX
from .errors import (
    Forbidden, InvalidRequest, InvalidSignature, MetadataTampering,
    PaymentNotSucceeded, RecordNotFound,
)
from .gateway import GatewayIntent, PaymentAdapter, SUCCEEDED_EVENT
from .helpers import receipt_number, to_minor
from .infra.sql import GatedAsyncSession
from .model import payments, pricing, tenants
from .model.events import WebhookEventStore
from .model.ledger import SlotDelta
from .model.orm import SLOT_TYPES
from .model.payments import PaymentRecord
from .model.tenants import Actor
from .notify import Notifier, PaymentNotice

logger = logging.getLogger(__name__)


@dataclass
class PurchaseIntent:
    payment_record_id: int
    client_secret: str
    amount: Decimal
    currency: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "clientSecret": self.client_secret,
            "paymentRecordId": self.payment_record_id,
            "amount": str(self.amount),
            "currency": self.currency,
        }


@dataclass
class ReconcileResult:
    payment: PaymentRecord
    already_processed: bool

    @property
    def receipt_number(self) -> Optional[str]:
        return self.payment.receipt_number

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "alreadyProcessed": self.already_processed,
            "message": (
                "Payment already processed" if self.already_processed
                else "Payment verified and slots added successfully"
            ),
            "receiptNumber": self.payment.receipt_number,
            "notificationSent": self.payment.notification_sent,
            "payment": self.payment.as_dict(),
        }


@dataclass
class WebhookOutcome:
    kind: str
    result: Optional[ReconcileResult] = None
    replay: bool = False
    ignored: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"received": True}
        if self.ignored:
            out["ignored"] = self.ignored
        elif self.replay:
            out["alreadyProcessed"] = True
        elif self.result is not None:
            out["alreadyProcessed"] = self.result.already_processed
            out["receiptNumber"] = self.result.receipt_number
        return out


# ----------------------------
# Purchase
# ----------------------------
async def create_purchase_intent(
    db: GatedAsyncSession,
    gateway: PaymentAdapter,
    company_id: int,
    slot_type: str,
    quantity: int,
    actor: Actor,
) -> PurchaseIntent:
    if not (actor.is_admin_of(company_id) or actor.is_super_admin):
        raise Forbidden("Only company admins can purchase slots")
    if slot_type not in SLOT_TYPES:
        raise InvalidRequest(f"Invalid slot type: {slot_type}")
    if isinstance(quantity, bool) or not isinstance(quantity, int) \
            or quantity <= 0:
        raise InvalidRequest("Quantity must be at least 1")

    entry = await pricing.get_price(db, slot_type)
    amount_minor = to_minor(entry.price_per_unit) * quantity

    record = await payments.create_payment(
        db,
        company_id=company_id,
        slot_type=slot_type,
        quantity=quantity,
        amount_minor=amount_minor,
        currency=entry.currency,
        payment_method=gateway.name,
    )

    intent = await gateway.create_intent(amount_minor, entry.currency, {
        "paymentRecordId": str(record.id),
        "companyId": str(company_id),
        "slotType": slot_type,
        "quantity": str(quantity),
    })
    await payments.set_gateway_intent(db, record.id, intent.id)

    logger.info(
        "payment intent %s opened for payment %d (company %d, %d x %s, "
        "%s %s)", intent.id, record.id, company_id, quantity, slot_type,
        record.amount, record.currency,
    )
    return PurchaseIntent(
        payment_record_id=record.id,
        client_secret=intent.client_secret or "",
        amount=record.amount,
        currency=record.currency,
    )


# ----------------------------
# Reconciliation
# ----------------------------
def _tampered(record_id: Any, reason: str) -> MetadataTampering:
    logger.warning(
        "SECURITY: payment %s rejected, gateway data mismatch: %s",
        record_id, reason,
    )
    return MetadataTampering(
        "Payment verification failed: metadata mismatch"
    )


def check_correlation(
    record: PaymentRecord, intent: GatewayIntent, payment_record_id: int
) -> None:
    meta = intent.metadata
    if meta.get("paymentRecordId") != str(payment_record_id) \
            or record.id != payment_record_id:
        raise _tampered(payment_record_id, "paymentRecordId")
    if meta.get("companyId") != str(record.company_id):
        raise _tampered(payment_record_id, "companyId")
    if record.gateway_intent_id and record.gateway_intent_id != intent.id:
        raise _tampered(payment_record_id, "payment intent id")
    if int(intent.amount) != record.amount_minor:
        raise _tampered(
            payment_record_id,
            f"amount {intent.amount} != {record.amount_minor}",
        )
    if intent.currency.lower() != record.currency.lower():
        raise _tampered(payment_record_id, "currency")


async def reconcile(
    db: GatedAsyncSession,
    intent: GatewayIntent,
    payment_record_id: int,
    *,
    source: str,
) -> ReconcileResult:
    """Settle one succeeded gateway intent against its payment record."""
    record = await payments.get_payment(db, payment_record_id)
    if record is None:
        raise RecordNotFound("Payment record not found")

    check_correlation(record, intent, payment_record_id)

    if record.is_paid:
        logger.info("payment %d already processed (%s)", record.id, source)
        return ReconcileResult(payment=record, already_processed=True)

    receipt = receipt_number(RECEIPT_PREFIX, record.id, record.created_at)
    updated = await payments.complete_payment_and_credit_slots(
        db,
        record.id,
        record.company_id,
        receipt,
        intent.id,
        SlotDelta.for_purchase(record.slot_type, record.quantity),
    )

    if updated is None:
        # lost the race against the other trigger
        current = await payments.get_payment(db, record.id)
        if current is None:
            raise RecordNotFound("Payment record not found")
        logger.info("payment %d settled concurrently (%s)", record.id, source)
        return ReconcileResult(payment=current, already_processed=True)

    logger.info(
        "payment %d completed via %s: receipt %s, +%d %s slot(s) for "
        "company %d", updated.id, source, receipt, updated.quantity,
        updated.slot_type, updated.company_id,
    )
    return ReconcileResult(payment=updated, already_processed=False)


async def verify_payment(
    db: GatedAsyncSession,
    gateway: PaymentAdapter,
    actor: Actor,
    payment_intent_id: str,
    payment_record_id: int,
) -> ReconcileResult:
    record = await payments.get_payment(db, payment_record_id)
    if record is None:
        raise RecordNotFound("Payment record not found")
    if not (actor.belongs_to(record.company_id) or actor.is_super_admin):
        raise Forbidden("Payment belongs to another company")

    # ask the gateway, never the client, whether the money arrived
    intent = await gateway.retrieve_intent(payment_intent_id)
    if not intent.succeeded:
        raise PaymentNotSucceeded(
            f"Payment not successful (status: {intent.status})"
        )
    return await reconcile(db, intent, payment_record_id, source="verify")


def _record_id_from(intent: GatewayIntent) -> Optional[int]:
    raw = intent.metadata.get("paymentRecordId", "")
    if not raw:
        return None
    try:
        record_id = int(raw)
    except ValueError:
        raise _tampered(raw, "malformed paymentRecordId")
    if record_id <= 0:
        raise _tampered(raw, "malformed paymentRecordId")
    return record_id


async def handle_webhook(
    db: GatedAsyncSession,
    gateway: PaymentAdapter,
    events: WebhookEventStore,
    payload: bytes,
    headers: dict,
) -> WebhookOutcome:
    try:
        event = gateway.verify_webhook(payload, headers)
    except (InvalidSignature, InvalidRequest) as e:
        logger.warning("webhook rejected: %s", e)
        raise

    kind = gateway.event_kind(event)
    if kind != SUCCEEDED_EVENT:
        logger.debug("ignoring webhook event %s", kind)
        return WebhookOutcome(kind=kind, ignored=kind)

    evt_id = gateway.event_id(event)
    if await events.seen(evt_id):
        return WebhookOutcome(kind=kind, replay=True)

    intent = gateway.event_intent(event)
    record_id = _record_id_from(intent)
    if record_id is None:
        # some other charge on the same gateway account
        logger.info("ignoring intent %s without slot purchase metadata",
                    intent.id)
        return WebhookOutcome(kind=kind, ignored="no slot purchase")

    result = await reconcile(db, intent, record_id, source="webhook")
    await events.mark_seen(evt_id)
    return WebhookOutcome(kind=kind, result=result)


# ----------------------------
# Notification (best effort)
# ----------------------------
async def _dispatch(notifier: Notifier, notice: PaymentNotice) -> bool:
    try:
        return bool(await notifier.send_payment_confirmation(notice))
    except Exception:
        logger.exception(
            "notification for receipt %s failed", notice.receipt_number
        )
        return False


async def send_receipt(
    db: GatedAsyncSession,
    notifier: Notifier,
    payment_id: int,
    super_admin_email: str = "",
) -> bool:
    """Mail the receipt for a freshly paid record. Never raises."""
    try:
        record = await payments.get_payment(db, payment_id)
        company = (
            await tenants.get_company(db, record.company_id)
            if record is not None else None
        )
    except Exception:
        logger.exception("could not load payment %d for notification",
                         payment_id)
        return False
    if record is None or company is None or not record.is_paid:
        logger.error("payment %d not notifiable", payment_id)
        return False

    paid_at = datetime.fromtimestamp(
        record.paid_at or record.created_at, tz=timezone.utc
    )
    notice = PaymentNotice(
        company_name=company.name,
        company_email=company.email,
        receipt_number=record.receipt_number or "",
        amount=record.amount,
        currency=record.currency,
        slot_type=record.slot_type,
        slot_quantity=record.quantity,
        transaction_id=record.gateway_transaction_id or "",
        payment_date=paid_at,
    )
    sent = await _dispatch(notifier, notice)

    if super_admin_email:
        await _dispatch(notifier, replace(
            notice,
            company_name=f"[ADMIN NOTIFICATION] {company.name}",
            company_email=super_admin_email,
        ))

    if sent:
        try:
            await payments.mark_notification_sent(db, payment_id)
        except Exception:
            logger.exception(
                "could not flag notification_sent on payment %d", payment_id
            )
    return sent
