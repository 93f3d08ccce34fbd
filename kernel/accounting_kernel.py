from typing import Optional

from core.posting_engine import PostingEngine
from kernel.store_adapter import JournalsRepoDB, LinksRepoDB, MovementsRepoDB
from kernel.validator_adapter import FiscalCalendarRepoDB, OrgConfigRepoDB
from services.audit_service import AuditService


class AccountingKernel:
    """
    Central wiring for inventory posting.
    - Pure rules live in core (builder, balance, guardrails)
    - PostingEngine drives the state machine
    - DB-backed repos are injected here (DI-friendly; tests swap any of them)
    """

    def __init__(
        self,
        movements: Optional[MovementsRepoDB] = None,
        journals: Optional[JournalsRepoDB] = None,
        links: Optional[LinksRepoDB] = None,
        org_config: Optional[OrgConfigRepoDB] = None,
        calendar: Optional[FiscalCalendarRepoDB] = None,
        audit: Optional[AuditService] = None,
    ):
        self.audit = audit or AuditService()
        self.movements = movements or MovementsRepoDB()
        self.journals = journals or JournalsRepoDB(self.audit)
        self.links = links or LinksRepoDB()
        self.org_config = org_config or OrgConfigRepoDB()
        self.calendar = calendar or FiscalCalendarRepoDB()
        self.posting_engine = PostingEngine(
            self.movements,
            self.journals,
            self.links,
            self.org_config,
            self.calendar,
            audit=self.audit,
        )
