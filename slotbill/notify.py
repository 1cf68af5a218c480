"""
Payment confirmation mail.

Dispatch is best effort: `send_payment_confirmation` reports failure with
False and never raises into reconciliation.
"""
from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

import httpx
from jinja2 import DictLoader, Environment, select_autoescape

logger = logging.getLogger(__name__)

_TEMPLATES = {
    "payment_confirmation.html": """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h1>Payment Successful!</h1>
  <p>Thank you for your purchase, {{ n.company_name }}.</p>
  <table>
    <tr><td>Receipt Number:</td><td><b>{{ n.receipt_number }}</b></td></tr>
    <tr><td>Slots:</td><td>{{ n.slot_quantity }} x {{ slot_label }}</td></tr>
    <tr><td>Amount:</td><td>{{ symbol }}{{ n.amount }} {{ n.currency }}</td></tr>
    <tr><td>Transaction ID:</td><td>{{ n.transaction_id }}</td></tr>
    <tr><td>Date:</td><td>{{ n.payment_date.strftime('%d %b %Y, %H:%M UTC') }}</td></tr>
  </table>
</div>
""",
}

_env = Environment(
    loader=DictLoader(_TEMPLATES),
    autoescape=select_autoescape(["html"]),
)


@dataclass(frozen=True)
class PaymentNotice:
    company_name: str
    company_email: str
    receipt_number: str
    amount: Decimal
    currency: str
    slot_type: str
    slot_quantity: int
    transaction_id: str
    payment_date: datetime


def render_confirmation(notice: PaymentNotice) -> str:
    return _env.get_template("payment_confirmation.html").render(
        n=notice,
        symbol="Rs." if notice.currency.upper() == "INR" else "$",
        slot_label="Admin" if notice.slot_type == "admin" else "Member",
    )


class Notifier(ABC):
    @abstractmethod
    async def send_payment_confirmation(
        self, notice: PaymentNotice
    ) -> bool: ...


class LogNotifier(Notifier):
    """Used when no mail API is configured: logs, reports not-sent."""

    async def send_payment_confirmation(self, notice: PaymentNotice) -> bool:
        logger.info(
            "mail disabled, receipt %s for %s not sent",
            notice.receipt_number, notice.company_email,
        )
        return False


class MailNotifier(Notifier):
    """Posts to a Resend-style HTTP mail API."""

    def __init__(self, http: httpx.AsyncClient, api_url: str, api_key: str,
                 sender: str) -> None:
        self.http = http
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender

    async def send_payment_confirmation(self, notice: PaymentNotice) -> bool:
        body = {
            "from": self.sender,
            "to": [notice.company_email],
            "subject": f"Payment Receipt - {notice.receipt_number}",
            "html": render_confirmation(notice),
        }
        try:
            r = await self.http.post(
                self.api_url,
                json=body,
                headers={"authorization": f"Bearer {self.api_key}"},
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                "payment confirmation for %s failed: %s",
                notice.receipt_number, e,
            )
            return False
        return True


def new_notifier(http: Optional[httpx.AsyncClient], api_url: str,
                 api_key: str, sender: str) -> Notifier:
    if http is None or not api_url:
        return LogNotifier()
    return MailNotifier(http, api_url, api_key, sender)
