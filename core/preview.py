# core/preview.py
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from core.balance import currency_totals, is_balanced
from core.gl_builder import build_gl_lines
from core.models import GLAccountMap, JournalLine, MovementLine, MovementTransaction
from core.posting_rules import resolve_variant
from core.utils import q2
from services.constants import DEFAULT_ACCOUNT_MAP


@dataclass(frozen=True)
class PreviewResult:
    lines: List[JournalLine] = field(default_factory=list)
    balanced: bool = True
    total_dr: Decimal = Decimal("0.00")
    total_cr: Decimal = Decimal("0.00")
    currency: Optional[str] = None


def preview(
    movement_type,
    quantity: Decimal,
    unit_cost: Decimal,
    currency: str,
    account_map: GLAccountMap = DEFAULT_ACCOUNT_MAP,
    *,
    product_id: Optional[str] = None,
    location_id: Optional[str] = None,
    description: Optional[str] = None,
) -> Optional[PreviewResult]:
    """
    Financial impact of a single inventory line, without touching the store.
    Runs the same builder used for posting on a one-line movement.
    Returns None when the movement has no posting rule.
    """
    quantity = Decimal(quantity)
    unit_cost = Decimal(unit_cost)
    if resolve_variant(movement_type, quantity) is None:
        return None

    txn = MovementTransaction(
        id="preview",
        organization_id="",
        movement_type=movement_type,
        transaction_date="",
        currency=currency,
        lines=[MovementLine(
            product_id=product_id,
            location_id=location_id,
            quantity=quantity,
            unit_cost=unit_cost,
            line_amount=q2(quantity * unit_cost),
            description=description,
        )],
    )
    built = build_gl_lines(txn, account_map)
    if not built.lines:
        return None

    dr, cr = currency_totals(built.lines).get(currency, (Decimal("0.00"), Decimal("0.00")))
    return PreviewResult(
        lines=built.lines,
        balanced=is_balanced(built.lines),
        total_dr=dr,
        total_cr=cr,
        currency=currency,
    )
