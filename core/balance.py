# core/balance.py
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Tuple

from core.models import JournalLine, Side, UnbalancedLedger
from core.utils import q2
from services.constants import BALANCE_TOLERANCE


@dataclass(frozen=True)
class BalanceSummary:
    # currency -> (total DR, total CR)
    totals: Dict[str, Tuple[Decimal, Decimal]]

    def total_dr(self, currency: str) -> Decimal:
        return self.totals.get(currency, (Decimal("0.00"), Decimal("0.00")))[0]

    def total_cr(self, currency: str) -> Decimal:
        return self.totals.get(currency, (Decimal("0.00"), Decimal("0.00")))[1]


def currency_totals(lines: Iterable[JournalLine]) -> Dict[str, Tuple[Decimal, Decimal]]:
    totals: Dict[str, Tuple[Decimal, Decimal]] = {}
    for l in lines:
        dr, cr = totals.get(l.currency, (Decimal("0.00"), Decimal("0.00")))
        if l.side == Side.DR:
            dr += q2(l.amount)
        else:
            cr += q2(l.amount)
        totals[l.currency] = (dr, cr)
    return totals


def verify_balance(lines: Iterable[JournalLine]) -> BalanceSummary:
    """
    Per-currency DR/CR check. Raises UnbalancedLedger with the deltas of every
    currency whose difference exceeds the tolerance.
    """
    totals = currency_totals(lines)
    deltas = {
        cur: dr - cr
        for cur, (dr, cr) in totals.items()
        if abs(dr - cr) > BALANCE_TOLERANCE
    }
    if deltas:
        raise UnbalancedLedger(deltas)
    return BalanceSummary(totals=totals)


def is_balanced(lines: Iterable[JournalLine]) -> bool:
    try:
        verify_balance(lines)
    except UnbalancedLedger:
        return False
    return True
