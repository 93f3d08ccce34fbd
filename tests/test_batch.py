import time

from core.models import PostingResult, PostingState
from services.batch_service import BatchOrchestrator
from tests.helpers import count_rows, line, store_movement


def test_batch_with_already_posted_item(service, org):
    for i in (1, 2, 3):
        store_movement(txn_id=f"MV-{i}", lines=[line(i, 10)])
    service.post_movement(org, "MV-2")

    batch = service.post_batch(org, ["MV-1", "MV-2", "MV-3"], max_workers=1)
    out = batch.to_dict()

    assert out["posted"] == 2
    assert out["failed"] == 0
    assert out["skipped"] == 1
    assert [r["sourceId"] for r in out["results"]] == ["MV-1", "MV-2", "MV-3"]
    assert out["results"][1]["success"] is True
    assert "financeTransactionId" not in out["results"][1]
    assert "financeTransactionId" in out["results"][0]
    assert count_rows("journal_entries") == 3


def test_one_bad_item_does_not_abort_siblings(service, org):
    store_movement(txn_id="MV-GOOD-1")
    store_movement(txn_id="MV-BAD", currency="USD")
    store_movement(txn_id="MV-GOOD-2")

    out = service.post_batch(org, ["MV-GOOD-1", "MV-MISSING", "MV-BAD", "MV-GOOD-2"]).to_dict()

    assert out["posted"] == 2
    assert out["failed"] == 2
    by_id = {r["sourceId"]: r for r in out["results"]}
    assert by_id["MV-MISSING"]["errorCode"] == "NOT_FOUND"
    assert by_id["MV-BAD"]["errorCode"] == "UNSUPPORTED_CURRENCY"
    assert by_id["MV-GOOD-2"]["success"] is True


def test_parallel_batch_posts_each_item_once(service, org):
    ids = [f"MV-P{i:02d}" for i in range(20)]
    for sid in ids:
        store_movement(txn_id=sid)

    out = service.post_batch(org, ids + ids[:5], max_workers=4).to_dict()

    assert out["failed"] == 0
    assert out["posted"] == 20
    assert out["skipped"] == 5
    assert count_rows("journal_entries") == 20
    assert count_rows("relationships") == 20


def test_exception_from_post_fn_is_isolated():
    def post(org_id, sid, user):
        if sid == "boom":
            raise RuntimeError("kaput")
        return PostingResult(success=True, state=PostingState.DONE, source_transaction_id=sid, finance_transaction_id=f"J-{sid}")

    result = BatchOrchestrator(post, max_workers=2).run("org", ["a", "boom", "b"])
    assert result.posted == 2
    assert result.failed == 1
    assert result.results[1].error_code == "DB_ERROR"
    assert "kaput" in result.results[1].error


def test_slow_item_times_out():
    def post(org_id, sid, user):
        if sid == "slow":
            time.sleep(0.5)
        return PostingResult(success=True, state=PostingState.DONE, source_transaction_id=sid)

    result = BatchOrchestrator(post, max_workers=2, item_timeout_s=0.05).run("org", ["slow", "fast"])
    assert result.results[0].error_code == "TIMEOUT"
    assert result.results[1].success


def test_timeout_counts_from_when_an_item_starts():
    def post(org_id, sid, user):
        if sid == "slow":
            time.sleep(0.7)
        return PostingResult(success=True, state=PostingState.DONE, source_transaction_id=sid)

    result = BatchOrchestrator(post, max_workers=1, item_timeout_s=0.5).run("org", ["slow", "queued"])
    assert result.results[0].error_code == "TIMEOUT"
    # waited behind "slow" but ran within its own window
    assert result.results[1].success
    assert result.results[1].state == PostingState.DONE.value


def test_item_that_never_starts_is_reported_not_attempted():
    started = []

    def post(org_id, sid, user):
        started.append(sid)
        if sid == "stuck":
            time.sleep(1.5)
        return PostingResult(success=True, state=PostingState.DONE, source_transaction_id=sid)

    result = BatchOrchestrator(post, max_workers=1, item_timeout_s=0.2).run("org", ["stuck", "queued"])
    assert result.results[0].error_code == "TIMEOUT"
    assert result.results[1].error_code == "NOT_ATTEMPTED"
    assert result.failed == 2
    assert started == ["stuck"]
