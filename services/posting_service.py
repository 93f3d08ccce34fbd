# services/posting_service.py
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence

from core.models import JournalEntry, LedgerConfigError, PostingResult
from core.preview import PreviewResult, preview
from kernel.accounting_kernel import AccountingKernel
from kernel.poster_adapter import PosterAdapter
from services.batch_service import BatchOrchestrator, BatchResult
from services.constants import BATCH_MAX_WORKERS, DEFAULT_ACCOUNT_MAP
from services.reconciliation_service import ReconciliationReport, ReconciliationService


class InventoryPostingService:
    """
    Inventory-to-finance posting service.
    - Posts single movements and batches through PosterAdapter
    - Previews the GL impact of a movement without persisting anything
    - Runs the orphan reconciliation scan
    """

    def __init__(self, kernel: Optional[AccountingKernel] = None):
        self.kernel = kernel or AccountingKernel()
        self.adapter = PosterAdapter(self.kernel)
        self.reconciler = ReconciliationService(self.kernel.journals, self.kernel.links, self.kernel.audit)

    def post_movement(self, organization_id: str, source_transaction_id: str, user_id: str = "system") -> PostingResult:
        return self.adapter.post_movement(organization_id, source_transaction_id, user_id)

    def post_batch(
        self,
        organization_id: str,
        source_transaction_ids: Sequence[str],
        user_id: str = "system",
        *,
        max_workers: int = BATCH_MAX_WORKERS,
        item_timeout_s: Optional[float] = None,
    ) -> BatchResult:
        batch = BatchOrchestrator(self.adapter.post_movement, max_workers=max_workers, item_timeout_s=item_timeout_s)
        return batch.run(organization_id, source_transaction_ids, user_id)

    def preview(
        self,
        movement_type,
        quantity: Decimal,
        unit_cost: Decimal,
        currency: str,
        organization_id: Optional[str] = None,
    ) -> Optional[PreviewResult]:
        """
        Uses the organization's account map when one is configured, else the default map.
        """
        account_map = DEFAULT_ACCOUNT_MAP
        if organization_id:
            try:
                account_map = self.kernel.org_config.account_map(organization_id)
            except LedgerConfigError:
                account_map = DEFAULT_ACCOUNT_MAP
        return preview(movement_type, quantity, unit_cost, currency, account_map)

    def reconcile(self, organization_id: str, user_id: str = "reconciler") -> ReconciliationReport:
        return self.reconciler.reconcile(organization_id, user_id)

    def get_journal(self, entry_id: str) -> Optional[JournalEntry]:
        return self.kernel.journals.get(entry_id)
