# app/services/pricing.py
"""
Fee calculation for cash delivery orders.

Formula:
  - profit (platform fee): max($3.50, 2% of amount)
  - compliance fee:        1.01% of amount + $1.90
  - delivery fee:          flat, configurable (DELIVERY_FEE)
  - total service fee:     sum of the three fees
  - total payment:         amount + total service fee

Intermediate values keep full Decimal precision; each output is rounded
half-up to cents independently.
"""
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.core.config import get_settings

PROFIT_FLOOR = Decimal("3.50")
PROFIT_RATE = Decimal("0.02")
COMPLIANCE_RATE = Decimal("0.0101")
COMPLIANCE_BASE = Decimal("1.90")

CENT = Decimal("0.01")


class InvalidAmount(ValueError):
    """Requested amount is negative, non-finite or not a number."""


@dataclass(frozen=True)
class FeeBreakdown:
    requested_amount: float
    profit: float
    compliance_fee: float
    delivery_fee: float
    total_service_fee: float
    total_payment: float

    def as_order_fields(self) -> dict[str, float]:
        """Column values for an `orders` row."""
        return {
            "requested_amount": self.requested_amount,
            "profit": self.profit,
            "compliance_fee": self.compliance_fee,
            "delivery_fee": self.delivery_fee,
            "total_service_fee": self.total_service_fee,
            "total_payment": self.total_payment,
        }


def _to_decimal(value: object) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidAmount(f"Amount must be finite, got {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {value!r}")
    return amount


def _cents(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def calculate_fees(
    requested_amount: float | int | Decimal,
    delivery_fee: float | Decimal | None = None,
) -> FeeBreakdown:
    """
    Compute the fee breakdown for a requested cash amount.

    Args:
        requested_amount: cash the customer wants delivered (>= 0).
        delivery_fee: flat delivery fee; defaults to settings.DELIVERY_FEE.

    Raises:
        InvalidAmount: if the amount is negative, NaN, infinite or not numeric.
    """
    amount = _to_decimal(requested_amount)
    if amount < 0:
        raise InvalidAmount(f"Amount cannot be negative, got {requested_amount!r}")

    if delivery_fee is None:
        delivery_fee = get_settings().DELIVERY_FEE
    delivery = _to_decimal(delivery_fee)

    profit = max(PROFIT_FLOOR, PROFIT_RATE * amount)
    compliance = COMPLIANCE_RATE * amount + COMPLIANCE_BASE
    total_service = profit + compliance + delivery
    total = amount + total_service

    return FeeBreakdown(
        requested_amount=_cents(amount),
        profit=_cents(profit),
        compliance_fee=_cents(compliance),
        delivery_fee=_cents(delivery),
        total_service_fee=_cents(total_service),
        total_payment=_cents(total),
    )


def validate_request_amount(amount: float | int) -> str | None:
    """
    Check the customer-facing request limits.

    Returns:
        None if the amount is acceptable, else a user-facing error message.
    """
    settings = get_settings()
    try:
        value = _to_decimal(amount)
    except InvalidAmount as exc:
        return str(exc)

    if value < settings.MIN_REQUEST_AMOUNT:
        return f"Minimum amount is ${settings.MIN_REQUEST_AMOUNT:,}"
    if value > settings.MAX_REQUEST_AMOUNT:
        return f"Maximum amount is ${settings.MAX_REQUEST_AMOUNT:,}"
    if value % settings.REQUEST_AMOUNT_STEP != 0:
        return f"Amount must be in ${settings.REQUEST_AMOUNT_STEP} increments"
    return None
