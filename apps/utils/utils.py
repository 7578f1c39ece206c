import uuid
from decimal import Decimal, ROUND_HALF_UP

from django.utils import timezone

CENT = Decimal("0.01")


def generate_order_number():
    """
    Human-readable unique order number, e.g. ORD-250114-9F3A1C.
    Uniqueness is enforced by the DB; a collision aborts the transaction.
    """
    return f"ORD-{timezone.now():%y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def quantize_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Rupees -> paise (what Stripe expects)."""
    return int((quantize_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def dict_clean(d: dict):
    """
    Remove keys where value is None or empty
    """
    return {k: v for k, v in d.items() if v not in [None, "", [], {}]}
