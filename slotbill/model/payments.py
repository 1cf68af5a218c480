# model/payments.py
"""
Payment record store.

One row per purchase attempt. Rows are created `pending`, flipped to `paid`
exactly once by `complete_payment_and_credit_slots`, and never deleted.

Exactly-once mechanism: a single conditional statement

    UPDATE company_payments SET status='paid', ...
    WHERE id = :id AND status = 'pending'
    RETURNING ...

The database evaluates the predicate and applies the write atomically per row
(row lock on PostgreSQL, database write lock on SQLite), so among any number of
concurrent callers only the first one gets a row back. The company credit is
applied in the same transaction, after the payment row, and only when that row
came back.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from ..helpers import from_minor, now_ts, to_iso
from ..infra.sql import GatedAsyncSession
from .ledger import SlotDelta, credit_slots
from .orm import STATUS_PAID, STATUS_PENDING

_COLUMNS = """
    id, company_id, slot_type, quantity, amount_minor, currency, status,
    payment_method, gateway_intent_id, gateway_transaction_id,
    receipt_number, notification_sent, created_at, paid_at
"""


@dataclass
class PaymentRecord:
    id: int
    company_id: int
    slot_type: str
    quantity: int
    amount_minor: int
    currency: str
    status: str
    payment_method: Optional[str]
    gateway_intent_id: Optional[str]
    gateway_transaction_id: Optional[str]
    receipt_number: Optional[str]
    notification_sent: bool
    created_at: float
    paid_at: Optional[float]

    @classmethod
    def from_row(cls, row) -> "PaymentRecord":
        return cls(
            id=int(row["id"]),
            company_id=int(row["company_id"]),
            slot_type=row["slot_type"],
            quantity=int(row["quantity"]),
            amount_minor=int(row["amount_minor"]),
            currency=row["currency"],
            status=row["status"],
            payment_method=row["payment_method"],
            gateway_intent_id=row["gateway_intent_id"],
            gateway_transaction_id=row["gateway_transaction_id"],
            receipt_number=row["receipt_number"],
            notification_sent=bool(row["notification_sent"]),
            created_at=float(row["created_at"]),
            paid_at=(
                float(row["paid_at"]) if row["paid_at"] is not None else None
            ),
        )

    @property
    def amount(self) -> Decimal:
        return from_minor(self.amount_minor)

    @property
    def is_paid(self) -> bool:
        return self.status == STATUS_PAID

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "companyId": self.company_id,
            "slotType": self.slot_type,
            "quantity": self.quantity,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status,
            "paymentMethod": self.payment_method,
            "gatewayTransactionId": self.gateway_transaction_id,
            "receiptNumber": self.receipt_number,
            "notificationSent": self.notification_sent,
            "createdAt": to_iso(self.created_at),
            "paidAt": to_iso(self.paid_at),
        }


async def create_payment(
    db: GatedAsyncSession,
    *,
    company_id: int,
    slot_type: str,
    quantity: int,
    amount_minor: int,
    currency: str,
    payment_method: str,
) -> PaymentRecord:
    async with db.gated():
        async with db.session.begin():
            row = (await db.session.execute(text(f"""
                INSERT INTO company_payments(
                    company_id, slot_type, quantity, amount_minor, currency,
                    status, payment_method, notification_sent, created_at
                ) VALUES (
                    :company_id, :slot_type, :quantity, :amount_minor,
                    :currency, :status, :payment_method, :ns, :created_at
                )
                RETURNING {_COLUMNS}
            """), {
                "company_id": company_id,
                "slot_type": slot_type,
                "quantity": quantity,
                "amount_minor": amount_minor,
                "currency": currency,
                "status": STATUS_PENDING,
                "payment_method": payment_method,
                "ns": False,
                "created_at": now_ts(),
            })).mappings().first()
    return PaymentRecord.from_row(row)


async def set_gateway_intent(
    db: GatedAsyncSession, payment_id: int, intent_id: str
) -> None:
    async with db.gated():
        async with db.session.begin():
            await db.session.execute(text("""
                UPDATE company_payments SET gateway_intent_id = :intent
                WHERE id = :id AND gateway_intent_id IS NULL
            """), {"id": payment_id, "intent": intent_id})


async def get_payment(
    db: GatedAsyncSession, payment_id: int
) -> Optional[PaymentRecord]:
    async with db.gated():
        async with db.session.begin():
            row = (await db.session.execute(text(f"""
                SELECT {_COLUMNS} FROM company_payments WHERE id = :id
            """), {"id": payment_id})).mappings().first()
    return PaymentRecord.from_row(row) if row else None


async def list_for_company(
    db: GatedAsyncSession, company_id: int, limit: int = 200
) -> List[PaymentRecord]:
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(text(f"""
                SELECT {_COLUMNS} FROM company_payments
                WHERE company_id = :cid
                ORDER BY created_at DESC, id DESC
                LIMIT :lim
            """), {"cid": company_id, "lim": limit})).mappings().all()
    return [PaymentRecord.from_row(r) for r in rows]


async def list_payments(
    db: GatedAsyncSession,
    *,
    company_id: Optional[int] = None,
    status: Optional[str] = None,
    start: Optional[float] = None,
    end: Optional[float] = None,
    limit: int = 200,
) -> List[PaymentRecord]:
    where = []
    params: Dict[str, Any] = {"lim": limit}
    if company_id is not None:
        where.append("company_id = :cid")
        params["cid"] = company_id
    if status:
        where.append("status = :status")
        params["status"] = status
    if start is not None:
        where.append("created_at >= :start")
        params["start"] = start
    if end is not None:
        where.append("created_at <= :end")
        params["end"] = end
    clause = f"WHERE {' AND '.join(where)}" if where else ""

    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(text(f"""
                SELECT {_COLUMNS} FROM company_payments
                {clause}
                ORDER BY created_at DESC, id DESC
                LIMIT :lim
            """), params)).mappings().all()
    return [PaymentRecord.from_row(r) for r in rows]


async def complete_payment_and_credit_slots(
    db: GatedAsyncSession,
    payment_id: int,
    company_id: int,
    receipt_number: str,
    gateway_transaction_id: str,
    delta: SlotDelta,
) -> Optional[PaymentRecord]:
    """
    Flip one pending payment to paid and credit the company, all or nothing.

    Returns the paid record, or None when the row was no longer pending
    (another caller already settled it). Raises RecordNotFound, rolling the
    status change back, if the company row is missing.
    """
    async with db.gated():
        async with db.session.begin():
            # Step A: guarded transition, payment row first
            row = (await db.session.execute(text(f"""
                UPDATE company_payments
                SET status = :paid,
                    receipt_number = :receipt,
                    gateway_transaction_id = :txn,
                    notification_sent = :ns,
                    paid_at = :now
                WHERE id = :id AND status = :pending
                RETURNING {_COLUMNS}
            """), {
                "id": payment_id,
                "paid": STATUS_PAID,
                "pending": STATUS_PENDING,
                "receipt": receipt_number,
                "txn": gateway_transaction_id,
                "ns": False,
                "now": now_ts(),
            })).mappings().first()

            if row is None:
                return None

            # Step B: company row second, relative increment
            await credit_slots(db.session, company_id, delta)

    return PaymentRecord.from_row(row)


async def mark_notification_sent(
    db: GatedAsyncSession, payment_id: int
) -> None:
    async with db.gated():
        async with db.session.begin():
            await db.session.execute(text("""
                UPDATE company_payments SET notification_sent = :t
                WHERE id = :id AND status = :paid
            """), {"id": payment_id, "t": True, "paid": STATUS_PAID})
