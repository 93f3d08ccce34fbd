# core/gl_builder.py
from dataclasses import dataclass, field
from typing import List

from core.models import GLAccountMap, JournalLine, MovementTransaction, Side
from core.posting_rules import line_smart_code, resolve_variant, roles_for
from core.utils import q2


@dataclass(frozen=True)
class BuildResult:
    lines: List[JournalLine] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skipped_lines: List[dict] = field(default_factory=list)


def build_gl_lines(txn: MovementTransaction, account_map: GLAccountMap) -> BuildResult:
    """
    Translate each movement line into one DR and one CR journal line.

    Lines without a posting rule (unknown movement type, zero-quantity
    adjustment) or without an amount produce nothing and a warning instead;
    they never block the rest of the movement.
    Numbering: DR then CR for source line k, before anything for line k+1.
    """
    lines: List[JournalLine] = []
    warnings: List[str] = []
    skipped: List[dict] = []

    for idx, src in enumerate(txn.lines, start=1):
        variant = resolve_variant(txn.movement_type, src.quantity)
        if variant is None:
            msg = f"No posting rule for movement type {txn.movement_type!r} (line {idx}, quantity {src.quantity})"
            warnings.append(msg)
            skipped.append({"line": idx, "product_id": src.product_id, "reason": msg})
            continue

        amount = q2(abs(src.line_amount))
        if amount == 0:
            msg = f"Zero amount on line {idx} (product {src.product_id})"
            warnings.append(msg)
            skipped.append({"line": idx, "product_id": src.product_id, "reason": msg})
            continue

        dr_role, cr_role = roles_for(variant)
        for side, role in ((Side.DR, dr_role), (Side.CR, cr_role)):
            account = account_map.account_for(role)
            lines.append(JournalLine(
                line_number=len(lines) + 1,
                side=side,
                role=role,
                account_code=account.code,
                account_name=account.name,
                currency=txn.currency,
                amount=amount,
                product_id=src.product_id,
                location_id=src.location_id,
                description=src.description or f"{variant.value.replace('_', ' ').title()} - {account.name}",
                smart_code=line_smart_code(variant, side.value),
            ))

    return BuildResult(lines=lines, warnings=warnings, skipped_lines=skipped)
