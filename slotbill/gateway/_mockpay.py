import base64
import hashlib
import hmac
import json
import time
import uuid
from typing import Dict, Tuple

from ..errors import InvalidRequest, InvalidSignature, RecordNotFound
from ..helpers import ct_equal
from .base import (
    INTENT_SUCCEEDED, SUCCEEDED_EVENT, GatewayIntent, PaymentAdapter
)

SIGNATURE_HEADER = "x-mockpay-signature"


def sign(secret: str, payload: bytes) -> str:
    mac = hmac.new(secret.encode(), payload, hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """In-process gateway for development and tests.

    Intents live in a dict on the adapter; `succeed()` flips one to succeeded
    and returns a signed `payment_intent.succeeded` webhook for it.
    """
    name = "mock"

    def __init__(self, secret: str) -> None:
        self.secret = secret
        self.intents: Dict[str, GatewayIntent] = {}

    async def create_intent(
        self, amount_minor: int, currency: str, metadata: Dict[str, str]
    ) -> GatewayIntent:
        intent_id = f"pi_mock_{uuid.uuid4().hex}"
        intent = GatewayIntent(
            id=intent_id,
            amount=int(amount_minor),
            currency=currency.lower(),
            status="requires_payment_method",
            metadata=dict(metadata),
            client_secret=f"{intent_id}_secret_{uuid.uuid4().hex[:12]}",
        )
        self.intents[intent_id] = intent
        return intent

    async def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise RecordNotFound(f"payment intent {intent_id} not found")
        return intent

    def succeed(self, intent_id: str) -> Tuple[bytes, dict]:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise RecordNotFound(f"payment intent {intent_id} not found")
        intent.status = INTENT_SUCCEEDED
        return self.build_event(intent, SUCCEEDED_EVENT)

    def build_event(self, intent: GatewayIntent, kind: str) -> Tuple[bytes, dict]:
        event = {
            "id": f"evt_{uuid.uuid4().hex}",
            "type": kind,
            "created": int(time.time()),
            "data": {"object": {
                "id": intent.id,
                "amount": intent.amount,
                "currency": intent.currency,
                "status": intent.status,
                "metadata": intent.metadata,
            }},
        }
        payload = json.dumps(event).encode()
        headers = {
            SIGNATURE_HEADER: sign(self.secret, payload),
            "content-type": "application/json",
        }
        return payload, headers

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get(SIGNATURE_HEADER)
        expected = sign(self.secret, payload)
        if not sig or not ct_equal(expected, sig):
            raise InvalidSignature("Invalid signature")
        try:
            return json.loads(payload.decode())
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidRequest("Invalid JSON")
