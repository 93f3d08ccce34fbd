# core/utils.py
from decimal import Decimal, ROUND_HALF_UP


def q2(value: Decimal | None) -> Decimal:
    return (value or Decimal("0")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def cents(value: Decimal | None) -> int:
    return int(q2(value) * 100)


def from_cents(value: int | None) -> Decimal:
    return q2(Decimal(value or 0) / 100)
