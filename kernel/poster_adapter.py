import logging
from typing import Optional

from core.models import ErrorCode, PostingError, PostingResult, PostingState
from kernel.accounting_kernel import AccountingKernel

logger = logging.getLogger("poster_adapter")


class PosterAdapter:
    """
    Facade between services and PostingEngine.
    - Normalizes input
    - Logs every outcome
    - Converts unexpected exceptions into DB_ERROR results
    """

    def __init__(self, kernel: Optional[AccountingKernel] = None):
        self.kernel = kernel or AccountingKernel()
        self.engine = self.kernel.posting_engine

    def post_movement(self, organization_id: str, source_transaction_id: str, user_id: str = "system") -> PostingResult:
        if not organization_id or not source_transaction_id:
            msg = "organization_id and source_transaction_id are required"
            return PostingResult(
                success=False,
                state=PostingState.FAILED,
                source_transaction_id=str(source_transaction_id or ""),
                errors=[msg],
                error_details=[PostingError(ErrorCode.INVALID_INPUT, msg)],
            )

        try:
            logger.info("Posting movement: org=%s source=%s user=%s", organization_id, source_transaction_id, user_id)
            result = self.engine.post(organization_id, source_transaction_id, user_id)
            if result.posted:
                logger.info("Posted: source=%s journal=%s", source_transaction_id, result.finance_transaction_id)
            elif result.skipped:
                logger.info("Skipped: source=%s reconciled=%s", source_transaction_id, result.reconciled)
            else:
                logger.warning("Posting failed: source=%s state=%s errors=%s", source_transaction_id, result.state.value, result.errors)
            return result

        except Exception as ex:
            logger.exception("Posting exception for %s", source_transaction_id)
            return PostingResult(
                success=False,
                state=PostingState.FAILED,
                source_transaction_id=source_transaction_id,
                errors=[str(ex)],
                error_details=[PostingError(ErrorCode.DB_ERROR, str(ex))],
            )
