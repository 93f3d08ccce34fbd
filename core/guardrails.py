# core/guardrails.py
from dataclasses import dataclass
from datetime import date, datetime
from typing import FrozenSet, List, Optional, Protocol

from core.models import ErrorCode, MovementTransaction, PostingError


# --- Repository protocols (read-only) ---
class FiscalCalendarRepo(Protocol):
    def period_status(self, organization_id: str, iso_date: str) -> Optional[str]: ...


class OrgConfigRepo(Protocol):
    def supported_currencies(self, organization_id: str) -> FrozenSet[str]: ...


@dataclass(frozen=True)
class GuardrailResult:
    ok: bool
    code: Optional[ErrorCode] = None
    reason: Optional[str] = None
    fiscal_period: Optional[str] = None
    fiscal_year: Optional[int] = None

    def as_error(self) -> Optional[PostingError]:
        if self.ok:
            return None
        return PostingError(self.code, self.reason)


def _rejected(code: ErrorCode, reason: str) -> GuardrailResult:
    return GuardrailResult(ok=False, code=code, reason=reason)


# --- Guardrail rules ---
def _posting_day(value) -> Optional[date]:
    """
    Calendar day of a plain ISO date or a full ISO timestamp, as written
    (no timezone shift). None when unparseable.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
    except ValueError:
        return None


def validate_fiscal_period(iso_date: str, organization_id: str, calendar: FiscalCalendarRepo) -> GuardrailResult:
    parsed = _posting_day(iso_date)
    if parsed is None:
        return _rejected(ErrorCode.INVALID_DATE, f"Invalid transaction date: {iso_date}")

    status = calendar.period_status(organization_id, parsed.isoformat())
    if status is None:
        return _rejected(ErrorCode.FISCAL_PERIOD_CLOSED, f"No open fiscal period covers {iso_date}")
    if status != "open":
        return _rejected(ErrorCode.FISCAL_PERIOD_CLOSED, f"Fiscal period closed for date {iso_date}")

    return GuardrailResult(
        ok=True,
        fiscal_period=f"{parsed.year}-{parsed.month:02d}",
        fiscal_year=parsed.year,
    )


def validate_currency_support(currency: str, organization_id: str, config: OrgConfigRepo) -> GuardrailResult:
    supported = config.supported_currencies(organization_id)
    if not currency or currency not in supported:
        listed = ", ".join(sorted(supported)) or "none"
        return _rejected(
            ErrorCode.UNSUPPORTED_CURRENCY,
            f"Currency {currency} not supported. Supported: {listed}",
        )
    return GuardrailResult(ok=True)


def validate_movement(txn: MovementTransaction, organization_id: str) -> List[PostingError]:
    errors: List[PostingError] = []
    if not txn.id:
        errors.append(PostingError(ErrorCode.INVALID_INPUT, "Source transaction id is required"))
    if txn.organization_id != organization_id:
        errors.append(PostingError(
            ErrorCode.INVALID_INPUT,
            f"Organization mismatch: {txn.organization_id} != {organization_id}",
        ))
    if not txn.transaction_date:
        errors.append(PostingError(ErrorCode.INVALID_INPUT, "Transaction date is required"))
    if not txn.currency:
        errors.append(PostingError(ErrorCode.INVALID_INPUT, "Currency is required"))
    return errors
