# core/posting_rules.py
from decimal import Decimal
from typing import Dict, Optional, Tuple

from core.models import AccountRole, MovementType, PostingVariant

# variant -> (debit role, credit role)
POSTING_RULES: Dict[PostingVariant, Tuple[AccountRole, AccountRole]] = {
    PostingVariant.OPENING: (AccountRole.INVENTORY_ASSET, AccountRole.INVENTORY_CLEARING),
    PostingVariant.RECEIPT: (AccountRole.INVENTORY_ASSET, AccountRole.INVENTORY_CLEARING),
    PostingVariant.ISSUE: (AccountRole.COGS, AccountRole.INVENTORY_ASSET),
    PostingVariant.ADJUSTMENT_GAIN: (AccountRole.INVENTORY_ASSET, AccountRole.INVENTORY_ADJUSTMENT),
    PostingVariant.ADJUSTMENT_LOSS: (AccountRole.INVENTORY_ADJUSTMENT, AccountRole.INVENTORY_ASSET),
}

_DIRECT: Dict[MovementType, PostingVariant] = {
    MovementType.OPENING: PostingVariant.OPENING,
    MovementType.RECEIPT: PostingVariant.RECEIPT,
    MovementType.ISSUE: PostingVariant.ISSUE,
}


def resolve_variant(movement_type, quantity: Decimal) -> Optional[PostingVariant]:
    """
    Map (movement type, sign of quantity) to a posting variant.
    Returns None when no rule applies: unknown type, or an adjustment of zero.
    """
    mtype = MovementType.parse(movement_type)
    if mtype is None:
        return None
    if mtype == MovementType.ADJUSTMENT:
        if quantity > 0:
            return PostingVariant.ADJUSTMENT_GAIN
        if quantity < 0:
            return PostingVariant.ADJUSTMENT_LOSS
        return None
    return _DIRECT[mtype]


def roles_for(variant: PostingVariant) -> Tuple[AccountRole, AccountRole]:
    return POSTING_RULES[variant]


def line_smart_code(variant: PostingVariant, side: str) -> str:
    return f"INV.FINANCE.GL.LINE.{variant.value}.{side}.v1"
