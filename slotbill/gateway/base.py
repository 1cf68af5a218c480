from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

SUCCEEDED_EVENT = "payment_intent.succeeded"
INTENT_SUCCEEDED = "succeeded"


@dataclass
class GatewayIntent:
    id: str
    amount: int  # minor units, as the gateway reports it
    currency: str
    status: str
    metadata: Dict[str, str] = field(default_factory=dict)
    client_secret: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == INTENT_SUCCEEDED


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    name: str = "abstract"

    @abstractmethod
    async def create_intent(
        self, amount_minor: int, currency: str, metadata: Dict[str, str]
    ) -> GatewayIntent: ...

    @abstractmethod
    async def retrieve_intent(self, intent_id: str) -> GatewayIntent: ...

    # raises InvalidSignature, returns the decoded event
    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    # e.g. "payment_intent.succeeded"
    def event_kind(self, event: dict) -> str:
        return event.get("type", "")

    def event_id(self, event: dict) -> Optional[str]:
        return event.get("id")

    def event_intent(self, event: dict) -> GatewayIntent:
        obj = (event.get("data") or {}).get("object") or {}
        return intent_from_dict(obj)


def intent_from_dict(obj: dict) -> GatewayIntent:
    metadata = obj.get("metadata") or {}
    return GatewayIntent(
        id=str(obj.get("id", "")),
        amount=int(obj.get("amount") or 0),
        currency=str(obj.get("currency", "")),
        status=str(obj.get("status", "")),
        metadata={str(k): str(v) for k, v in metadata.items()},
        client_secret=obj.get("client_secret"),
    )
