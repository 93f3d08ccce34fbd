# services/api.py
# Internal entry points of the posting domain, called by transport layers (RPC, CLI, jobs).

from decimal import Decimal, InvalidOperation
from typing import Optional

from services.posting_service import InventoryPostingService

posting = InventoryPostingService()


def post_inventory_batch(payload: dict, user_id: str = "system", max_workers: Optional[int] = None) -> dict:
    """
    {organizationId, sourceTransactionIds[]} -> {posted, failed, skipped, results[]}
    """
    org_id = payload.get("organizationId")
    ids = payload.get("sourceTransactionIds") or []
    if not org_id or not isinstance(ids, list):
        raise ValueError("organizationId and a list of sourceTransactionIds are required")
    kwargs = {"max_workers": max_workers} if max_workers else {}
    return posting.post_batch(org_id, ids, user_id, **kwargs).to_dict()


def preview_inventory_impact(movement_type: str, quantity, unit_cost, currency: str, organization_id: Optional[str] = None) -> Optional[dict]:
    """
    GL impact of a prospective movement line, or None when it would not post.
    """
    try:
        qty = Decimal(str(quantity))
        cost = Decimal(str(unit_cost))
    except InvalidOperation:
        return None
    result = posting.preview(movement_type, qty, cost, currency, organization_id)
    if result is None:
        return None
    return {
        "balanced": result.balanced,
        "currency": result.currency,
        "total_dr": str(result.total_dr),
        "total_cr": str(result.total_cr),
        "lines": [
            {
                "line_number": l.line_number,
                "side": l.side.value,
                "role": l.role.value,
                "account_code": l.account_code,
                "account_name": l.account_name,
                "amount": str(l.amount),
            }
            for l in result.lines
        ],
    }
