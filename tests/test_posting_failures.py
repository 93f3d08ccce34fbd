from decimal import Decimal

import pytest

import core.posting_engine as posting_engine
from core.gl_builder import BuildResult
from core.models import AccountRole, ErrorCode, JournalLine, PostingState, Side, StoreError
from kernel.accounting_kernel import AccountingKernel
from kernel.store_adapter import JournalsRepoDB
from kernel.validator_adapter import FiscalCalendarRepoDB
from services.posting_service import InventoryPostingService
from tests.helpers import count_rows, line, seed_org, store_movement


class BrokenJournals(JournalsRepoDB):
    def create_journal(self, header, lines, *, actor_user_id=None):
        raise StoreError("connection reset")


def _codes(result):
    return [e.code for e in result.error_details]


def test_missing_source_is_not_found(service, org):
    r = service.post_movement(org, "MV-NOPE")
    assert not r.success
    assert r.state == PostingState.FAILED
    assert _codes(r) == [ErrorCode.NOT_FOUND]


def test_source_of_another_org_is_not_found(service, org):
    seed_org("org-other")
    store_movement(txn_id="MV-X", org_id="org-other")
    r = service.post_movement(org, "MV-X")
    assert _codes(r) == [ErrorCode.NOT_FOUND]


def test_closed_period_short_circuits_before_builder(service, org, monkeypatch):
    cal = FiscalCalendarRepoDB()
    cal.open_period(org, "2025-03", "2025-03-01", "2025-03-31")
    cal.close_period(org, "2025-03")
    store_movement(txn_id="MV-CLOSED")

    def builder_must_not_run(*args, **kwargs):
        pytest.fail("builder invoked despite closed period")

    monkeypatch.setattr(posting_engine, "build_gl_lines", builder_must_not_run)

    r = service.post_movement(org, "MV-CLOSED")
    assert r.state == PostingState.FAILED
    assert _codes(r) == [ErrorCode.FISCAL_PERIOD_CLOSED]
    assert r.error_details[0].retryable
    assert count_rows("journal_entries") == 0


def test_unsupported_currency_rejected(service, org):
    store_movement(txn_id="MV-USD", currency="USD")
    r = service.post_movement(org, "MV-USD")
    assert _codes(r) == [ErrorCode.UNSUPPORTED_CURRENCY]
    assert count_rows("journal_entries") == 0


def test_missing_account_map_rejected(kernel):
    kernel.org_config.set_supported_currencies("org-bare", ["AED"])
    kernel.calendar.open_year("org-bare", 2025)
    store_movement(txn_id="MV-BARE", org_id="org-bare")
    r = InventoryPostingService(kernel).post_movement("org-bare", "MV-BARE")
    assert _codes(r) == [ErrorCode.CONFIG_MISSING]


def test_unknown_movement_type_is_skipped_with_warning(service, org, kernel):
    store_movement(txn_id="MV-T", movement_type="TRANSFER", lines=[line(1, 1)])
    r = service.post_movement(org, "MV-T")
    assert r.success
    assert r.state == PostingState.SKIPPED
    assert r.warnings
    assert count_rows("journal_entries") == 0
    assert count_rows("relationships") == 0
    assert kernel.audit.actions_for("MV-T") == ["SKIP"]


def test_movement_without_lines_is_skipped(service, org):
    store_movement(txn_id="MV-EMPTY", lines=[])
    r = service.post_movement(org, "MV-EMPTY")
    assert r.state == PostingState.SKIPPED


def test_unbalanced_output_fails_and_persists_nothing(service, org, monkeypatch, caplog):
    store_movement(txn_id="MV-UNB")
    bad = [
        JournalLine(1, Side.DR, AccountRole.INVENTORY_ASSET, "1300", "Inventory", "AED", Decimal("10.00")),
        JournalLine(2, Side.CR, AccountRole.INVENTORY_CLEARING, "2150", "Inventory Clearing", "AED", Decimal("9.00")),
    ]
    monkeypatch.setattr(posting_engine, "build_gl_lines", lambda txn, account_map: BuildResult(lines=bad))

    with caplog.at_level("CRITICAL", logger="posting.alerts"):
        r = service.post_movement(org, "MV-UNB")

    assert r.state == PostingState.FAILED
    assert _codes(r) == [ErrorCode.UNBALANCED]
    assert not r.error_details[0].retryable
    assert r.error_details[0].details == {"per_currency_deltas": {"AED": "1.00"}}
    assert any("Unbalanced" in rec.message for rec in caplog.records)
    assert count_rows("journal_entries") == 0
    assert count_rows("journal_lines") == 0


def test_write_failure_leaves_nothing_and_can_be_retried(org):
    store_movement(txn_id="MV-WF")
    broken = InventoryPostingService(AccountingKernel(journals=BrokenJournals()))
    r = broken.post_movement(org, "MV-WF")
    assert r.state == PostingState.FAILED
    assert _codes(r) == [ErrorCode.WRITE_FAILURE]
    assert r.error_details[0].retryable
    assert count_rows("relationships") == 0

    retry = InventoryPostingService().post_movement(org, "MV-WF")
    assert retry.state == PostingState.DONE


def test_invalid_input_rejected_by_adapter(service):
    r = service.post_movement("", "MV-1")
    assert _codes(r) == [ErrorCode.INVALID_INPUT]


def test_malformed_date_is_not_retryable(service, org):
    store_movement(txn_id="MV-BADDATE", date_="15/03/2025")
    r = service.post_movement(org, "MV-BADDATE")
    assert _codes(r) == [ErrorCode.INVALID_DATE]
    assert not r.error_details[0].retryable
    assert count_rows("journal_entries") == 0
