import time
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
import hmac
from typing import Optional

_CENT = Decimal("0.01")

# ISO codes without a minor unit (or with three); amounts here are always
# stored in hundredths, so these are refused
NON_CENT_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "MGA", "PYG",
    "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    "BHD", "JOD", "KWD", "OMR", "TND",
})


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def to_minor(amount: Decimal | int | str) -> int:
    """Major units (rupees, euros) -> integer minor units (paise, cents)."""
    minor = (Decimal(str(amount)) * 100).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(minor)


def is_whole_cents(amount: Decimal) -> bool:
    return amount == amount.quantize(_CENT)


def from_minor(minor: int) -> Decimal:
    return (Decimal(int(minor)) / 100).quantize(_CENT)


def receipt_number(prefix: str, payment_id: int, created_at: float) -> str:
    # derived only from the record itself so every retry yields the same
    # receipt for the same payment
    stamp = datetime.fromtimestamp(created_at, tz=timezone.utc)
    return f"{prefix}-{stamp:%Y%m%d}-{int(payment_id):06d}"
