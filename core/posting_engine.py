# core/posting_engine.py
import logging
from typing import List, Optional, Protocol

from core.balance import verify_balance
from core.gl_builder import build_gl_lines
from core.guardrails import (
    FiscalCalendarRepo,
    OrgConfigRepo,
    validate_currency_support,
    validate_fiscal_period,
    validate_movement,
)
from core.models import (
    DuplicatePostingError,
    ErrorCode,
    GLAccountMap,
    JournalEntry,
    JournalLine,
    JournalMetadata,
    LedgerConfigError,
    MovementTransaction,
    PostingError,
    PostingLink,
    PostingResult,
    PostingState,
    UnbalancedLedger,
)
from services.audit_service import AuditService
from services.constants import (
    FINANCE_DNA_VERSION,
    GL_JOURNAL,
    JOURNAL_SMART_CODE,
    LEGACY_POSTED_FLAG,
    POSTING_TYPE_AUTO,
    RELATIONSHIP_POSTED_TO_FINANCE,
)

logger = logging.getLogger("posting_engine")
alerts = logging.getLogger("posting.alerts")


# --- Store protocols ---
class MovementRepo(Protocol):
    def fetch_by_id(self, organization_id: str, transaction_id: str, include_lines: bool = True) -> Optional[MovementTransaction]: ...


class JournalRepo(Protocol):
    def create_journal(self, header: JournalEntry, lines: List[JournalLine], *, actor_user_id: Optional[str] = None) -> str: ...
    def find_by_source(self, organization_id: str, source_transaction_id: str) -> Optional[str]: ...


class LinkRepo(Protocol):
    def create_link(self, organization_id: str, from_entity_id: str, to_entity_id: str,
                    relationship_type: str = ..., relationship_data: Optional[dict] = None) -> PostingLink: ...
    def find_link(self, organization_id: str, from_entity_id: str, relationship_type: str = ...) -> Optional[PostingLink]: ...


class AccountMapRepo(OrgConfigRepo, Protocol):
    def account_map(self, organization_id: str) -> GLAccountMap: ...


# --- Result helpers ---

def _failed(source_id: str, code: ErrorCode, message: str, details: Optional[dict] = None, **kw) -> PostingResult:
    err = PostingError(code, message, details)
    return PostingResult(
        success=False,
        state=PostingState.FAILED,
        source_transaction_id=source_id,
        error_details=[err],
        errors=[message],
        **kw,
    )


def _skipped(source_id: str, **kw) -> PostingResult:
    return PostingResult(success=True, state=PostingState.SKIPPED, source_transaction_id=source_id, **kw)


# --- Posting Engine ---

class PostingEngine:
    """
    Posts one inventory movement to the general ledger.

    START → LOADED → VALIDATED → BUILT → BALANCED → WRITTEN → LINKED → DONE,
    with SKIPPED (already posted / nothing to post), FAILED, and
    ORPHANED_WRITTEN (journal written, link missing) as terminals.
    Holds no per-call state; safe to share between batch workers.
    """

    def __init__(
        self,
        movements: MovementRepo,
        journals: JournalRepo,
        links: LinkRepo,
        org_config: AccountMapRepo,
        calendar: FiscalCalendarRepo,
        audit: Optional[AuditService] = None,
    ):
        self.movements = movements
        self.journals = journals
        self.links = links
        self.org_config = org_config
        self.calendar = calendar
        self._audit = audit or AuditService()

    def post(self, organization_id: str, source_transaction_id: str, actor_user_id: str = "system") -> PostingResult:
        # START → LOADED
        txn = self.movements.fetch_by_id(organization_id, source_transaction_id, include_lines=True)
        if txn is None:
            logger.warning("Source transaction not found: org=%s id=%s", organization_id, source_transaction_id)
            return _failed(source_transaction_id, ErrorCode.NOT_FOUND, f"Source transaction {source_transaction_id} not found")

        errs = validate_movement(txn, organization_id)
        if errs:
            return PostingResult(
                success=False,
                state=PostingState.FAILED,
                source_transaction_id=source_transaction_id,
                error_details=errs,
                errors=[e.message for e in errs],
            )

        # Idempotency witness
        already = self._already_posted(txn, actor_user_id)
        if already is not None:
            return already

        # LOADED → VALIDATED (fiscal period, then currency)
        fiscal = validate_fiscal_period(txn.transaction_date, organization_id, self.calendar)
        if not fiscal.ok:
            logger.warning("Guardrail rejected %s: %s", txn.id, fiscal.reason)
            return _failed(txn.id, fiscal.code, fiscal.reason)
        currency = validate_currency_support(txn.currency, organization_id, self.org_config)
        if not currency.ok:
            logger.warning("Guardrail rejected %s: %s", txn.id, currency.reason)
            return _failed(txn.id, currency.code, currency.reason)

        try:
            account_map = self.org_config.account_map(organization_id)
        except LedgerConfigError as e:
            logger.error("Posting configuration missing: %s", e)
            return _failed(txn.id, ErrorCode.CONFIG_MISSING, str(e))

        # VALIDATED → BUILT
        built = build_gl_lines(txn, account_map)
        for w in built.warnings:
            logger.warning("Movement %s: %s", txn.id, w)
        if not built.lines:
            self._audit.log_action(
                "SKIP", actor_user_id,
                {"reason": "no postable lines", "movement_type": txn.movement_type, "warnings": built.warnings},
                source_transaction_id=txn.id,
            )
            return _skipped(txn.id, warnings=built.warnings)

        # BUILT → BALANCED
        try:
            summary = verify_balance(built.lines)
        except UnbalancedLedger as e:
            alerts.critical(
                "Unbalanced ledger for movement %s (org=%s): deltas=%s",
                txn.id, organization_id, e.per_currency_deltas,
            )
            return _failed(
                txn.id, ErrorCode.UNBALANCED, str(e),
                {"per_currency_deltas": {k: str(v) for k, v in e.per_currency_deltas.items()}},
                gl_lines=built.lines,
                warnings=built.warnings,
            )

        total_dr = summary.total_dr(txn.currency)
        total_cr = summary.total_cr(txn.currency)
        metadata = JournalMetadata(
            finance_dna_version=FINANCE_DNA_VERSION,
            source_transaction_id=txn.id,
            source_transaction_type=txn.movement_type,
            source_transaction_number=txn.transaction_number,
            posting_type=POSTING_TYPE_AUTO,
            total_dr=total_dr,
            total_cr=total_cr,
            currency=txn.currency,
            fiscal_period_validated=True,
            currency_validated=True,
            balance_validated=True,
            fiscal_period=fiscal.fiscal_period,
            fiscal_year=fiscal.fiscal_year,
            posted_by=actor_user_id,
            skipped_lines=built.skipped_lines,
        )
        header = JournalEntry(
            organization_id=organization_id,
            transaction_type=GL_JOURNAL,
            smart_code=JOURNAL_SMART_CODE,
            transaction_date=txn.transaction_date,
            total_amount=total_dr,
            currency=txn.currency,
            metadata=metadata,
        )

        # BALANCED → WRITTEN (single attempt; never retried once it succeeded)
        try:
            entry_id = self.journals.create_journal(header, built.lines, actor_user_id=actor_user_id)
        except DuplicatePostingError:
            logger.info("Journal for %s already written by a concurrent worker", txn.id)
            return _skipped(txn.id, warnings=built.warnings)
        except Exception as e:
            logger.exception("Journal write failed for %s", txn.id)
            return _failed(txn.id, ErrorCode.WRITE_FAILURE, f"Journal write failed: {e}", warnings=built.warnings)

        # WRITTEN → LINKED
        try:
            link = self.links.create_link(
                organization_id,
                txn.id,
                entry_id,
                RELATIONSHIP_POSTED_TO_FINANCE,
                {
                    "posted_by": actor_user_id,
                    "fiscal_period": fiscal.fiscal_period,
                    "fiscal_year": fiscal.fiscal_year,
                    "posting_type": POSTING_TYPE_AUTO,
                },
            )
        except DuplicatePostingError as e:
            link = self.links.find_link(organization_id, txn.id, RELATIONSHIP_POSTED_TO_FINANCE)
            if link is None or link.to_entity_id != entry_id:
                # The journal just written has no link pointing at it.
                return self._orphaned(txn.id, entry_id, actor_user_id, e, built.lines, metadata)
            # A concurrent attempt attached the link to this journal while healing it.
        except Exception as e:
            return self._orphaned(txn.id, entry_id, actor_user_id, e, built.lines, metadata)
        except BaseException:
            # Cancelled between write and link: leave it to reconciliation, never rewrite.
            alerts.critical("Posting of %s interrupted after journal %s was written", txn.id, entry_id)
            raise

        # LINKED → DONE
        logger.info(
            "Posted movement %s → journal %s (%s %s, %d lines)",
            txn.id, entry_id, total_dr, txn.currency, len(built.lines),
        )
        return PostingResult(
            success=True,
            state=PostingState.DONE,
            source_transaction_id=txn.id,
            finance_transaction_id=entry_id,
            relationship_id=link.id,
            gl_lines=built.lines,
            metadata=metadata.to_dict(),
            warnings=built.warnings,
        )

    # ---------------------------
    # Internals
    # ---------------------------

    def _already_posted(self, txn: MovementTransaction, actor_user_id: str) -> Optional[PostingResult]:
        link = self.links.find_link(txn.organization_id, txn.id, RELATIONSHIP_POSTED_TO_FINANCE)
        if link is not None:
            logger.info("Movement %s already posted (journal %s)", txn.id, link.to_entity_id)
            return _skipped(txn.id, finance_transaction_id=link.to_entity_id, relationship_id=link.id)

        if txn.metadata.get(LEGACY_POSTED_FLAG):
            logger.info("Movement %s flagged as posted in its own metadata", txn.id)
            return _skipped(txn.id, finance_transaction_id=txn.metadata.get("finance_transaction_id"))

        orphan_id = self.journals.find_by_source(txn.organization_id, txn.id)
        if orphan_id is None:
            return None

        # Journal exists without its link: attach the link, never write a second journal.
        try:
            link = self.links.create_link(
                txn.organization_id, txn.id, orphan_id, RELATIONSHIP_POSTED_TO_FINANCE,
                {"posted_by": actor_user_id, "reconciled": True},
            )
        except DuplicatePostingError:
            link = self.links.find_link(txn.organization_id, txn.id, RELATIONSHIP_POSTED_TO_FINANCE)
        except Exception as e:
            return self._orphaned(txn.id, orphan_id, actor_user_id, e)

        self._audit.log_action(
            "RECONCILE", actor_user_id, {"entry_id": orphan_id, "link_id": link.id if link else None},
            source_transaction_id=txn.id, entry_id=orphan_id,
        )
        logger.warning("Reconciled orphaned journal %s for movement %s", orphan_id, txn.id)
        return _skipped(
            txn.id,
            finance_transaction_id=orphan_id,
            relationship_id=link.id if link else None,
            reconciled=True,
        )

    def _orphaned(self, source_id, entry_id, actor_user_id, exc, lines=(), metadata=None) -> PostingResult:
        msg = f"Journal {entry_id} written but link failed: {exc}"
        alerts.critical("Orphaned journal for movement %s: %s", source_id, msg)
        try:
            self._audit.log_action(
                "ORPHAN", actor_user_id, {"entry_id": entry_id, "error": str(exc)},
                source_transaction_id=source_id, entry_id=entry_id,
            )
        except Exception:
            logger.exception("Audit write failed for orphaned journal %s", entry_id)
        return PostingResult(
            success=False,
            state=PostingState.ORPHANED_WRITTEN,
            source_transaction_id=source_id,
            finance_transaction_id=entry_id,
            gl_lines=list(lines),
            metadata=metadata.to_dict() if metadata else None,
            error_details=[PostingError(ErrorCode.ORPHANED_WRITTEN, msg, {"entry_id": entry_id})],
            errors=[msg],
        )
