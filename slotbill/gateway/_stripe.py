import asyncio
import json
import logging
from typing import Dict

import stripe

from ..errors import GatewayError, InvalidRequest, InvalidSignature
from .base import GatewayIntent, PaymentAdapter, intent_from_dict

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"


def _plain(obj) -> dict:
    if obj is None:
        return {}
    to_dict = getattr(obj, "to_dict", None)
    return to_dict() if to_dict is not None else dict(obj)


class StripeGateway(PaymentAdapter):
    name = "stripe"

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def _to_intent(self, intent) -> GatewayIntent:
        data = _plain(intent)
        data["metadata"] = _plain(getattr(intent, "metadata", None))
        return intent_from_dict(data)

    async def create_intent(
        self, amount_minor: int, currency: str, metadata: Dict[str, str]
    ) -> GatewayIntent:
        try:
            # stripe's client is blocking; keep it off the event loop
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                api_key=self.api_key,
                amount=int(amount_minor),
                currency=currency.lower(),
                automatic_payment_methods={
                    "enabled": True,
                    "allow_redirects": "always",
                },
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error("stripe create_intent failed: %s", e)
            raise GatewayError("Payment gateway rejected the request") from e
        return self._to_intent(intent)

    async def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.retrieve, intent_id, api_key=self.api_key
            )
        except stripe.InvalidRequestError as e:
            raise InvalidRequest(f"Unknown payment intent {intent_id}") from e
        except stripe.StripeError as e:
            logger.error("stripe retrieve_intent failed: %s", e)
            raise GatewayError("Payment gateway unavailable") from e
        return self._to_intent(intent)

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get(SIGNATURE_HEADER)
        if not sig:
            raise InvalidSignature("No signature header")
        try:
            stripe.Webhook.construct_event(payload, sig, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(f"Webhook Error: {e}") from e
        except ValueError as e:
            raise InvalidRequest("Invalid payload") from e
        # signature is good; work on the plain JSON from here on
        return json.loads(payload.decode())
