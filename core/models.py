from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional
from datetime import datetime, timezone


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_DATE = "INVALID_DATE"
    FISCAL_PERIOD_CLOSED = "FISCAL_PERIOD_CLOSED"
    UNSUPPORTED_CURRENCY = "UNSUPPORTED_CURRENCY"
    CONFIG_MISSING = "CONFIG_MISSING"
    UNBALANCED = "UNBALANCED"
    WRITE_FAILURE = "WRITE_FAILURE"
    ORPHANED_WRITTEN = "ORPHANED_WRITTEN"
    DB_ERROR = "DB_ERROR"
    TIMEOUT = "TIMEOUT"
    NOT_ATTEMPTED = "NOT_ATTEMPTED"


GUARDRAIL_CODES = frozenset({
    ErrorCode.INVALID_DATE,
    ErrorCode.FISCAL_PERIOD_CLOSED,
    ErrorCode.UNSUPPORTED_CURRENCY,
})

# Closed periods and unsupported currencies become postable once org configuration changes.
RETRYABLE_CODES = frozenset({
    ErrorCode.WRITE_FAILURE,
    ErrorCode.DB_ERROR,
    ErrorCode.TIMEOUT,
    ErrorCode.NOT_ATTEMPTED,
    ErrorCode.FISCAL_PERIOD_CLOSED,
    ErrorCode.UNSUPPORTED_CURRENCY,
})


class MovementType(str, Enum):
    OPENING = "OPENING"
    RECEIPT = "RECEIPT"
    ISSUE = "ISSUE"
    ADJUSTMENT = "ADJUSTMENT"

    @classmethod
    def parse(cls, value) -> Optional["MovementType"]:
        if isinstance(value, MovementType):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class PostingVariant(str, Enum):
    OPENING = "OPENING"
    RECEIPT = "RECEIPT"
    ISSUE = "ISSUE"
    ADJUSTMENT_GAIN = "ADJUSTMENT_GAIN"
    ADJUSTMENT_LOSS = "ADJUSTMENT_LOSS"


class AccountRole(str, Enum):
    INVENTORY_ASSET = "inventory_asset"
    INVENTORY_CLEARING = "inventory_clearing"
    COGS = "cogs"
    INVENTORY_ADJUSTMENT = "inventory_adjustment"


class Side(str, Enum):
    DR = "DR"
    CR = "CR"


class PostingState(str, Enum):
    START = "START"
    LOADED = "LOADED"
    VALIDATED = "VALIDATED"
    BUILT = "BUILT"
    BALANCED = "BALANCED"
    WRITTEN = "WRITTEN"
    LINKED = "LINKED"
    DONE = "DONE"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    ORPHANED_WRITTEN = "ORPHANED_WRITTEN"


# --- Exceptions ---

class UnbalancedLedger(Exception):
    """Generated GL lines do not net to zero for at least one currency."""

    def __init__(self, per_currency_deltas: Dict[str, Decimal]):
        self.per_currency_deltas = dict(per_currency_deltas)
        detail = ", ".join(f"{cur}: {delta}" for cur, delta in sorted(self.per_currency_deltas.items()))
        super().__init__(f"GL lines not balanced ({detail})")


class LedgerConfigError(Exception):
    """Organization posting configuration is missing or incomplete."""


class StoreError(Exception):
    pass


class DuplicatePostingError(StoreError):
    """Uniqueness violation on a per-source journal or posting link."""


# --- Source documents (read-only for the engine) ---

@dataclass(frozen=True)
class MovementLine:
    product_id: str
    location_id: Optional[str]
    quantity: Decimal
    unit_cost: Decimal
    line_amount: Decimal
    description: Optional[str] = None


@dataclass(frozen=True)
class MovementTransaction:
    id: str
    organization_id: str
    movement_type: str
    transaction_date: str
    currency: str
    lines: List[MovementLine] = field(default_factory=list)
    transaction_number: Optional[str] = None
    metadata: dict = field(default_factory=dict)


# --- Configuration ---

@dataclass(frozen=True)
class GLAccount:
    code: str
    name: str


@dataclass(frozen=True)
class GLAccountMap:
    inventory_asset: GLAccount
    inventory_clearing: GLAccount
    cogs: GLAccount
    inventory_adjustment: GLAccount

    def account_for(self, role: AccountRole) -> GLAccount:
        return getattr(self, role.value)


# --- Ledger output ---

@dataclass(frozen=True)
class JournalLine:
    line_number: int
    side: Side
    role: AccountRole
    account_code: str
    account_name: str
    currency: str
    amount: Decimal
    product_id: Optional[str] = None
    location_id: Optional[str] = None
    description: Optional[str] = None
    smart_code: Optional[str] = None


@dataclass(frozen=True)
class JournalMetadata:
    finance_dna_version: str
    source_transaction_id: str
    source_transaction_type: str
    source_transaction_number: Optional[str]
    posting_type: str
    total_dr: Decimal
    total_cr: Decimal
    currency: str
    fiscal_period_validated: bool
    currency_validated: bool
    balance_validated: bool
    fiscal_period: Optional[str] = None
    fiscal_year: Optional[int] = None
    posted_by: Optional[str] = None
    gl_posting_date: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    skipped_lines: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "finance_dna_version": self.finance_dna_version,
            "source_transaction_id": self.source_transaction_id,
            "source_transaction_type": self.source_transaction_type,
            "source_transaction_number": self.source_transaction_number,
            "posting_type": self.posting_type,
            "total_dr": str(self.total_dr),
            "total_cr": str(self.total_cr),
            "currency": self.currency,
            "fiscal_period_validated": self.fiscal_period_validated,
            "currency_validated": self.currency_validated,
            "balance_validated": self.balance_validated,
            "fiscal_period": self.fiscal_period,
            "fiscal_year": self.fiscal_year,
            "posted_by": self.posted_by,
            "gl_posting_date": self.gl_posting_date,
            "skipped_lines": list(self.skipped_lines),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "JournalMetadata":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["total_dr"] = Decimal(str(known.get("total_dr", "0")))
        known["total_cr"] = Decimal(str(known.get("total_cr", "0")))
        return cls(**known)


@dataclass(frozen=True)
class JournalEntry:
    organization_id: str
    transaction_date: str
    total_amount: Decimal
    currency: str
    metadata: JournalMetadata
    lines: List[JournalLine] = field(default_factory=list)
    id: Optional[str] = None
    transaction_type: str = "GL_JOURNAL"
    status: str = "completed"
    smart_code: Optional[str] = None


@dataclass(frozen=True)
class PostingLink:
    id: str
    organization_id: str
    from_entity_id: str
    to_entity_id: str
    relationship_type: str


# --- Results ---

@dataclass(frozen=True)
class PostingError:
    code: ErrorCode
    message: str
    details: Optional[dict] = None

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


@dataclass(frozen=True)
class PostingResult:
    success: bool
    state: PostingState
    source_transaction_id: str
    finance_transaction_id: Optional[str] = None
    relationship_id: Optional[str] = None
    gl_lines: List[JournalLine] = field(default_factory=list)
    metadata: Optional[dict] = None
    warnings: List[str] = field(default_factory=list)
    error_details: List[PostingError] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    reconciled: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def skipped(self) -> bool:
        return self.state == PostingState.SKIPPED

    @property
    def posted(self) -> bool:
        return self.state == PostingState.DONE
