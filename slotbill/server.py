from __future__ import annotations
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional

import httpx
import redis.asyncio as redis
from fastapi import (
    BackgroundTasks, Depends, FastAPI, Header, Query, Request,
)
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import billing
from .config import (
    DATABASE_URL, DEFAULT_CURRENCY, EVENTS_BACKEND, LOG_LEVEL, MAIL_API_KEY,
    MAIL_API_URL, MAIL_FROM, MOCK_WEBHOOK_URL, REDIS_MAX_CONN, REDIS_URL,
    SUPER_ADMIN_EMAIL,
)
from .errors import (
    BillingError, Forbidden, GatewayNotConfigured, InvalidRequest,
    RecordNotFound, Unauthenticated,
)
from .gateway import MockPay, PaymentAdapter, new_gateway
from .infra.sql import GatedAsyncSession, make_async_engine
from .infra.timings import install_shutdown_flush, timeit
from .model import ledger, payments, pricing, tenants
from .model.events import WebhookEventStore, new_store
from .model.orm import PAYMENT_STATUSES, Base
from .model.pricing import PricingEntry
from .model.tenants import Actor
from .notify import Notifier, new_notifier

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="SlotBill",
    default_response_class=ORJSONResponse,
)

# shutdown handler trying to post our detailed timings
install_shutdown_flush(app)


@app.exception_handler(BillingError)
async def _billing_error(request: Request, exc: BillingError):
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )


# ----------------------------
# Dependencies
# ----------------------------
async def get_db(request: Request) -> GatedAsyncSession:
    state = request.app.state
    async with state.sessions() as session:
        yield GatedAsyncSession(session=session, gated=state.gated)


def get_gateway(request: Request) -> PaymentAdapter:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise GatewayNotConfigured("Payment gateway not configured")
    return gateway


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


async def webhook_events(
    request: Request, db: GatedAsyncSession = Depends(get_db),
) -> WebhookEventStore:
    if EVENTS_BACKEND == "redis":
        yield new_store(r=request.app.state.redis)
    else:
        yield new_store(db=db)


async def current_actor(
    x_user_id: Optional[str] = Header(None),
    db: GatedAsyncSession = Depends(get_db),
) -> Actor:
    if not x_user_id:
        raise Unauthenticated("Authentication required")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise Unauthenticated("Authentication required")
    actor = await tenants.get_actor(db, user_id)
    if actor is None:
        raise Unauthenticated("User not found")
    return actor


def require_super_admin(actor: Actor = Depends(current_actor)) -> Actor:
    if not actor.is_super_admin:
        raise Forbidden("Super admin access required")
    return actor


def require_company_admin(actor: Actor = Depends(current_actor)) -> Actor:
    if actor.company_id is None:
        raise Forbidden("User must belong to a company")
    if not actor.is_admin_of(actor.company_id):
        raise Forbidden("Only company admins can manage slot payments")
    return actor


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _db_init():
    engine, sessions, gated = make_async_engine(DATABASE_URL)
    app.state.engine = engine
    app.state.sessions = sessions
    app.state.gated = gated
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=5.0,
        limits=httpx.Limits(
            max_connections=64, max_keepalive_connections=64
        ),
    )


@app.on_event("startup")
async def _redis_start():
    if EVENTS_BACKEND == "redis":
        app.state.redis = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            max_connections=REDIS_MAX_CONN,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("startup")
async def _gateway_start():
    app.state.gateway = new_gateway()
    app.state.notifier = new_notifier(
        app.state.http, MAIL_API_URL, MAIL_API_KEY, MAIL_FROM
    )
    logger.info(
        "SlotBill starting: gateway=%s, webhook events=%s",
        app.state.gateway.name,
        "Redis" if EVENTS_BACKEND == "redis" else "SQL",
    )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.dispose()


# ----------------------------
# Request bodies
# ----------------------------
SlotType = Literal["admin", "member"]


class PricingIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    slot_type: SlotType = Field(alias="slotType")
    price_per_unit: Decimal = Field(alias="pricePerUnit", ge=0, max_digits=12,
                                   decimal_places=2)
    currency: str = Field(default=DEFAULT_CURRENCY, min_length=3,
                          max_length=10)


class PurchaseIn(BaseModel):
    # any client-sent "amount" is dropped here; the server prices the order
    model_config = ConfigDict(populate_by_name=True)

    slot_type: SlotType = Field(alias="slotType")
    quantity: int = Field(gt=0)


class VerifyIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_intent_id: str = Field(alias="paymentIntentId", min_length=1)
    payment_record_id: int = Field(alias="paymentRecordId", gt=0)


async def _send_receipt_later(state, payment_id: int) -> None:
    # runs after the response; uses its own session
    async with state.sessions() as session:
        db = GatedAsyncSession(session=session, gated=state.gated)
        await billing.send_receipt(
            db, state.notifier, payment_id, SUPER_ADMIN_EMAIL
        )


def _schedule_receipt(request: Request, background: BackgroundTasks,
                      result: Optional[billing.ReconcileResult]) -> None:
    if result is None or result.already_processed:
        return
    background.add_task(
        _send_receipt_later, request.app.state, result.payment.id
    )


# ----------------------------
# Config
# ----------------------------
@app.get("/api/config")
async def get_config(request: Request):
    gateway = getattr(request.app.state, "gateway", None)
    return {
        "gateway": gateway.name if gateway is not None else None,
        "paymentsEnabled": gateway is not None,
    }


# ----------------------------
# Pricing catalog
# ----------------------------
@app.get("/api/slot-pricing")
async def list_slot_pricing(
    actor: Actor = Depends(current_actor),
    db: GatedAsyncSession = Depends(get_db),
):
    if not (actor.is_super_admin or actor.is_admin_of(actor.company_id)):
        raise Forbidden("Access denied")
    return [p.as_dict() for p in await pricing.list_prices(db)]


@app.post("/api/slot-pricing")
async def upsert_slot_pricing(
    body: PricingIn,
    actor: Actor = Depends(require_super_admin),
    db: GatedAsyncSession = Depends(get_db),
):
    entry = await pricing.upsert_price(db, PricingEntry(
        slot_type=body.slot_type,
        price_per_unit=body.price_per_unit,
        currency=body.currency,
    ))
    logger.info("slot pricing updated by user %d: %s", actor.id,
                entry.as_dict())
    return entry.as_dict()


# ----------------------------
# Purchase: open a gateway intent
# ----------------------------
@app.post("/api/create-payment-intent")
async def create_payment_intent(
    body: PurchaseIn,
    actor: Actor = Depends(require_company_admin),
    db: GatedAsyncSession = Depends(get_db),
    gateway: PaymentAdapter = Depends(get_gateway),
):
    async with timeit("billing.create_intent"):
        intent = await billing.create_purchase_intent(
            db, gateway, actor.company_id, body.slot_type, body.quantity,
            actor,
        )
    return intent.as_dict()


# ----------------------------
# Reconciliation entry points
# ----------------------------
@app.post("/api/verify-payment")
async def verify_payment(
    body: VerifyIn,
    request: Request,
    background: BackgroundTasks,
    actor: Actor = Depends(current_actor),
    db: GatedAsyncSession = Depends(get_db),
    gateway: PaymentAdapter = Depends(get_gateway),
):
    async with timeit("billing.verify"):
        result = await billing.verify_payment(
            db, gateway, actor, body.payment_intent_id, body.payment_record_id
        )
    _schedule_receipt(request, background, result)
    return result.as_dict()


@app.post("/api/stripe-webhook")
async def payments_webhook(
    request: Request,
    background: BackgroundTasks,
    db: GatedAsyncSession = Depends(get_db),
    gateway: PaymentAdapter = Depends(get_gateway),
    events: WebhookEventStore = Depends(webhook_events),
):
    payload = await request.body()
    headers = dict(request.headers)

    async with timeit("billing.webhook"):
        outcome = await billing.handle_webhook(
            db, gateway, events, payload, headers
        )
    _schedule_receipt(request, background, outcome.result)
    return outcome.as_dict()


# ----------------------------
# Payment records
# ----------------------------
@app.get("/api/payments/{payment_id}")
async def get_payment(
    payment_id: int,
    actor: Actor = Depends(current_actor),
    db: GatedAsyncSession = Depends(get_db),
):
    record = await payments.get_payment(db, payment_id)
    if record is None:
        raise RecordNotFound("Payment record not found")
    if not (actor.is_super_admin or actor.belongs_to(record.company_id)):
        raise Forbidden("Payment belongs to another company")
    return record.as_dict()


@app.get("/api/my-company-payments")
async def my_company_payments(
    limit: int = 200,
    actor: Actor = Depends(require_company_admin),
    db: GatedAsyncSession = Depends(get_db),
):
    records = await payments.list_for_company(
        db, actor.company_id, limit=max(1, min(limit, 500))
    )
    return [r.as_dict() for r in records]


def _parse_date(value: Optional[str], end_of_day: bool = False
                ) -> Optional[float]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        raise InvalidRequest(f"invalid date: {value}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    if end_of_day and len(value) == 10:
        dt = dt.replace(hour=23, minute=59, second=59, microsecond=999999)
    return dt.timestamp()


@app.get("/api/super-admin/payments")
async def super_admin_payments(
    company_id: Optional[int] = Query(None, alias="companyId"),
    status: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: int = 200,
    actor: Actor = Depends(require_super_admin),
    db: GatedAsyncSession = Depends(get_db),
):
    if status and status not in PAYMENT_STATUSES:
        raise InvalidRequest(f"invalid status: {status}")
    records = await payments.list_payments(
        db,
        company_id=company_id,
        status=status,
        start=_parse_date(start),
        end=_parse_date(end, end_of_day=True),
        limit=max(1, min(limit, 500)),
    )
    return [r.as_dict() for r in records]


@app.get("/api/company/slots")
async def company_slots(
    actor: Actor = Depends(current_actor),
    db: GatedAsyncSession = Depends(get_db),
):
    if actor.company_id is None:
        raise Forbidden("User must belong to a company")
    return await ledger.get_slots(db, actor.company_id)


# ----------------------------
# MockPay: complete a mock intent and deliver its webhook
# ----------------------------
@app.post("/mockpay/{intent_id}/emit")
async def mockpay_emit(
    intent_id: str,
    request: Request,
    gateway: PaymentAdapter = Depends(get_gateway),
):
    if not isinstance(gateway, MockPay):
        raise RecordNotFound("mock gateway not enabled")

    payload, headers = gateway.succeed(intent_id)

    client_http: httpx.AsyncClient = request.app.state.http
    delivered = False
    try:
        r = await client_http.post(
            MOCK_WEBHOOK_URL, content=payload, headers=headers
        )
        delivered = r.status_code < 300
    except httpx.HTTPError as e:
        # the client can still settle through /api/verify-payment
        logger.warning("mock webhook delivery failed: %s", e)

    return {"ok": True, "intentId": intent_id, "delivered": delivered}
