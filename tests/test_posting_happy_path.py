from decimal import Decimal

from core.models import PostingState
from db.db_manager import DBManager
from tests.helpers import count_rows, line, sides, store_movement

STABLE_KEYS = {
    "finance_dna_version",
    "source_transaction_id",
    "source_transaction_type",
    "source_transaction_number",
    "posting_type",
    "total_dr",
    "total_cr",
    "currency",
    "fiscal_period_validated",
    "currency_validated",
    "balance_validated",
}


def test_receipt_posts_balanced_journal(service, org):
    store_movement(txn_id="MV-A", movement_type="RECEIPT", lines=[line(100, "12.50")])

    result = service.post_movement(org, "MV-A", "tester")
    assert result.success, f"Posting failed: {result.errors}"
    assert result.state == PostingState.DONE
    assert result.finance_transaction_id is not None
    assert result.relationship_id is not None

    journal = service.get_journal(result.finance_transaction_id)
    assert journal.transaction_type == "GL_JOURNAL"
    assert journal.total_amount == Decimal("1250.00")
    assert journal.transaction_date == "2025-03-15"
    assert sides(journal.lines) == [
        ("DR", "inventory_asset", Decimal("1250.00")),
        ("CR", "inventory_clearing", Decimal("1250.00")),
    ]
    assert journal.metadata.balance_validated is True
    assert journal.metadata.source_transaction_id == "MV-A"


def test_issue_posts_cogs_against_inventory(service, org):
    store_movement(txn_id="MV-B", movement_type="ISSUE", lines=[line(40, "12.50")])

    result = service.post_movement(org, "MV-B")
    assert result.state == PostingState.DONE
    assert sides(result.gl_lines) == [
        ("DR", "cogs", Decimal("500.00")),
        ("CR", "inventory_asset", Decimal("500.00")),
    ]


def test_metadata_carries_lineage_and_validation_flags(service, org):
    store_movement(txn_id="MV-M", movement_type="RECEIPT", lines=[line(2, 5)])
    result = service.post_movement(org, "MV-M", "tester")

    meta = result.metadata
    assert STABLE_KEYS <= set(meta)
    assert meta["source_transaction_id"] == "MV-M"
    assert meta["source_transaction_type"] == "RECEIPT"
    assert meta["source_transaction_number"] == "NO-MV-M"
    assert meta["posting_type"] == "AUTO"
    assert meta["total_dr"] == meta["total_cr"] == "10.00"
    assert meta["currency"] == "AED"
    assert meta["fiscal_period"] == "2025-03"
    assert meta["posted_by"] == "tester"

    stored = service.get_journal(result.finance_transaction_id).metadata.to_dict()
    assert STABLE_KEYS <= set(stored)


def test_link_points_from_source_to_journal(service, org):
    store_movement(txn_id="MV-L")
    result = service.post_movement(org, "MV-L")
    row = DBManager.fetch_one(
        "SELECT * FROM relationships WHERE from_entity_id = ? AND relationship_type = 'POSTED_TO_FINANCE'",
        ("MV-L",),
    )
    assert row["to_entity_id"] == result.finance_transaction_id
    assert row["id"] == result.relationship_id


def test_multi_line_movement_stores_every_line(service, org):
    store_movement(txn_id="MV-ML", movement_type="RECEIPT", lines=[line(1, 10, "A"), line(2, 10, "B"), line(3, 10, "C")])
    result = service.post_movement(org, "MV-ML")
    assert count_rows("journal_lines", "entry_id = ?", (result.finance_transaction_id,)) == 6
    row = DBManager.fetch_one(
        "SELECT SUM(CASE WHEN side='DR' THEN amount_cents ELSE 0 END) AS dr, "
        "SUM(CASE WHEN side='CR' THEN amount_cents ELSE 0 END) AS cr FROM journal_lines WHERE entry_id = ?",
        (result.finance_transaction_id,),
    )
    assert row["dr"] == row["cr"] == 6000


def test_partially_postable_movement_records_skipped_lines(service, org):
    store_movement(txn_id="MV-P", movement_type="ADJUSTMENT", lines=[line(0, 5, "ZERO"), line(-2, 5, "LOSS")])
    result = service.post_movement(org, "MV-P")
    assert result.state == PostingState.DONE
    assert len(result.warnings) == 1
    assert result.metadata["skipped_lines"][0]["product_id"] == "ZERO"


def test_posting_is_audited_with_valid_chain(service, org, kernel):
    store_movement(txn_id="MV-AU")
    service.post_movement(org, "MV-AU", "auditor")
    assert kernel.audit.actions_for("MV-AU") == ["POST"]
    assert kernel.audit.verify_chain("MV-AU")


def test_movement_with_timestamp_date_posts(service, org):
    store_movement(txn_id="MV-TS", date_="2025-03-15T10:30:00Z")
    r = service.post_movement(org, "MV-TS")
    assert r.state == PostingState.DONE, r.errors
    assert r.metadata["fiscal_period"] == "2025-03"
    assert service.get_journal(r.finance_transaction_id).transaction_date == "2025-03-15T10:30:00Z"
