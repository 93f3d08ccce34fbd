# services/reconciliation_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from core.models import DuplicatePostingError
from kernel.store_adapter import JournalsRepoDB, LinksRepoDB
from services.audit_service import AuditService
from services.constants import RELATIONSHIP_POSTED_TO_FINANCE

logger = logging.getLogger("reconciliation")


@dataclass(frozen=True)
class ReconciliationReport:
    scanned: int = 0
    linked: List[str] = field(default_factory=list)
    already_linked: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class ReconciliationService:
    """
    Repairs orphaned postings: journals written without their POSTED_TO_FINANCE link.
    Attaches the missing link; never writes a journal.
    """

    def __init__(
        self,
        journals: Optional[JournalsRepoDB] = None,
        links: Optional[LinksRepoDB] = None,
        audit: Optional[AuditService] = None,
    ):
        self._audit = audit or AuditService()
        self._journals = journals or JournalsRepoDB(self._audit)
        self._links = links or LinksRepoDB()

    def reconcile(self, organization_id: str, user_id: str = "reconciler") -> ReconciliationReport:
        orphans = self._journals.find_unlinked(organization_id)
        linked: List[str] = []
        already: List[str] = []
        errors: List[str] = []

        for entry_id, source_id in orphans:
            try:
                link = self._links.create_link(
                    organization_id, source_id, entry_id, RELATIONSHIP_POSTED_TO_FINANCE,
                    {"posted_by": user_id, "reconciled": True},
                )
            except DuplicatePostingError:
                already.append(source_id)
                continue
            except Exception as e:
                logger.exception("Could not link journal %s to %s", entry_id, source_id)
                errors.append(f"{source_id}: {e}")
                continue

            self._audit.log_action(
                "RECONCILE", user_id, {"entry_id": entry_id, "link_id": link.id},
                source_transaction_id=source_id, entry_id=entry_id,
            )
            linked.append(source_id)

        if orphans:
            logger.warning(
                "Reconciliation org=%s: scanned=%d linked=%d errors=%d",
                organization_id, len(orphans), len(linked), len(errors),
            )
        return ReconciliationReport(scanned=len(orphans), linked=linked, already_linked=already, errors=errors)
