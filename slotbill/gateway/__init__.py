from ..config import MOCK_SECRET, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from .base import (
    GatewayIntent, PaymentAdapter, SUCCEEDED_EVENT, INTENT_SUCCEEDED
)
from ._mockpay import MockPay
from ._stripe import StripeGateway


def new_gateway() -> PaymentAdapter:
    if STRIPE_SECRET_KEY:
        return StripeGateway(STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET)
    return MockPay(MOCK_SECRET)


__all__ = [
    "GatewayIntent", "PaymentAdapter", "MockPay", "StripeGateway",
    "SUCCEEDED_EVENT", "INTENT_SUCCEEDED", "new_gateway",
]
