# services/batch_service.py
from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from core.models import ErrorCode, PostingResult, PostingState
from services.constants import BATCH_MAX_WORKERS

logger = logging.getLogger("batch_orchestrator")

PostFn = Callable[[str, str, str], PostingResult]


@dataclass(frozen=True)
class BatchItemResult:
    source_id: str
    success: bool
    state: str
    finance_transaction_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> dict:
        out = {"sourceId": self.source_id, "success": self.success, "state": self.state}
        if self.finance_transaction_id:
            out["financeTransactionId"] = self.finance_transaction_id
        if self.error:
            out["error"] = self.error
            out["errorCode"] = self.error_code
        return out


@dataclass(frozen=True)
class BatchResult:
    posted: int = 0
    failed: int = 0
    skipped: int = 0
    results: List[BatchItemResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "posted": self.posted,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
        }


def _item_from_result(source_id: str, result: PostingResult) -> BatchItemResult:
    error = error_code = None
    if not result.success:
        error = "; ".join(result.errors) or result.state.value
        if result.error_details:
            error_code = result.error_details[0].code.value
    return BatchItemResult(
        source_id=source_id,
        success=result.success,
        state=result.state.value,
        # only journals created by this run; skips carry no new id
        finance_transaction_id=result.finance_transaction_id if result.posted else None,
        error=error,
        error_code=error_code,
    )


def _item_from_exception(source_id: str, code: ErrorCode, message: str) -> BatchItemResult:
    return BatchItemResult(
        source_id=source_id,
        success=False,
        state=PostingState.FAILED.value,
        error=message,
        error_code=code.value,
    )


class _Attempt:
    """Start time of one item, set by the worker thread that runs it."""

    def __init__(self):
        self.started = threading.Event()
        self.started_at: Optional[float] = None


class BatchOrchestrator:
    """
    Fans source transaction ids out to the posting engine.
    - max_workers=1 runs sequentially; more uses a bounded thread pool
    - one item's failure never aborts its siblings
    - results keep the input order
    - item_timeout_s bounds each attempt from the moment it starts running;
      items still queued at the batch deadline are cancelled, not timed out
    """

    def __init__(self, post_fn: PostFn, max_workers: int = BATCH_MAX_WORKERS, item_timeout_s: Optional[float] = None):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._post = post_fn
        self.max_workers = max_workers
        self.item_timeout_s = item_timeout_s

    def run(self, organization_id: str, source_transaction_ids: Sequence[str], actor_user_id: str = "system") -> BatchResult:
        ids = list(source_transaction_ids)
        logger.info("Batch start: org=%s items=%d workers=%d", organization_id, len(ids), self.max_workers)

        batch_deadline = None
        if self.item_timeout_s is not None:
            rounds = math.ceil(len(ids) / self.max_workers)
            batch_deadline = time.monotonic() + self.item_timeout_s * rounds

        items: List[BatchItemResult] = []
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="posting")
        try:
            attempts = [_Attempt() for _ in ids]
            futures = [
                pool.submit(self._attempt, attempt, organization_id, sid, actor_user_id)
                for sid, attempt in zip(ids, attempts)
            ]
            for sid, attempt, fut in zip(ids, attempts, futures):
                items.append(self._collect(sid, attempt, fut, batch_deadline))
        finally:
            pool.shutdown(wait=self.item_timeout_s is None, cancel_futures=True)

        posted = sum(1 for i in items if i.state == PostingState.DONE.value)
        skipped = sum(1 for i in items if i.state == PostingState.SKIPPED.value)
        failed = sum(1 for i in items if not i.success)
        logger.info("Batch done: org=%s posted=%d skipped=%d failed=%d", organization_id, posted, skipped, failed)
        return BatchResult(posted=posted, failed=failed, skipped=skipped, results=items)

    def _attempt(self, attempt: _Attempt, organization_id: str, source_id: str, actor_user_id: str) -> PostingResult:
        attempt.started_at = time.monotonic()
        attempt.started.set()
        return self._post(organization_id, source_id, actor_user_id)

    def _collect(self, sid: str, attempt: _Attempt, fut: Future, batch_deadline: Optional[float]) -> BatchItemResult:
        timeout = None
        if self.item_timeout_s is not None:
            if not attempt.started.wait(max(0.0, batch_deadline - time.monotonic())) and fut.cancel():
                logger.error("Posting of %s never started before the batch deadline", sid)
                return _item_from_exception(sid, ErrorCode.NOT_ATTEMPTED, "Not started before the batch deadline")
            # cancel() lost the race: the worker is already past its first statement
            attempt.started.wait()
            timeout = max(0.0, attempt.started_at + self.item_timeout_s - time.monotonic())
        try:
            return _item_from_result(sid, fut.result(timeout=timeout))
        except FutureTimeout:
            # The attempt may still finish; an orphan is picked up by reconciliation.
            logger.error("Posting of %s timed out after %ss", sid, self.item_timeout_s)
            return _item_from_exception(sid, ErrorCode.TIMEOUT, f"Timed out after {self.item_timeout_s}s")
        except Exception as e:
            logger.exception("Posting of %s raised", sid)
            return _item_from_exception(sid, ErrorCode.DB_ERROR, f"{type(e).__name__}: {e}")
