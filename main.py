# main.py
import logging
from datetime import date
from decimal import Decimal

from core.models import MovementLine, MovementTransaction
from db.db_manager import DBManager
from kernel.store_adapter import MovementsRepoDB
from kernel.validator_adapter import FiscalCalendarRepoDB, OrgConfigRepoDB
from services.constants import DEFAULT_ACCOUNT_MAP
from services.posting_service import InventoryPostingService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("main")

DEMO_ORG = "org-demo"


def bootstrap_db():
    """
    Initialize schema, run migrations and seed the demo organization's configuration.
    """
    logger.info("Initializing database...")
    DBManager.initialize()
    OrgConfigRepoDB().save_account_map(DEMO_ORG, DEFAULT_ACCOUNT_MAP)
    OrgConfigRepoDB().set_supported_currencies(DEMO_ORG, ["AED"])
    FiscalCalendarRepoDB().open_year(DEMO_ORG, date.today().year)
    logger.info("Database initialized.")


def demo_postings():
    """
    Receive stock, issue part of it, then post both in one batch (twice, to show idempotence).
    """
    today = date.today().isoformat()
    movements = MovementsRepoDB()
    for txn_id, mtype, qty in (("MV-DEMO-1", "RECEIPT", Decimal("100")), ("MV-DEMO-2", "ISSUE", Decimal("40"))):
        if movements.fetch_by_id(DEMO_ORG, txn_id) is None:
            movements.insert(MovementTransaction(
                id=txn_id,
                organization_id=DEMO_ORG,
                movement_type=mtype,
                transaction_date=today,
                currency="AED",
                transaction_number=txn_id,
                lines=[MovementLine("SKU-001", "LOC-MAIN", qty, Decimal("12.50"), qty * Decimal("12.50"))],
            ))

    svc = InventoryPostingService()

    impact = svc.preview("ADJUSTMENT", Decimal("-5"), Decimal("20"), "AED", DEMO_ORG)
    if impact:
        logger.info("Preview adjustment loss: %s", [(l.side.value, l.account_code, str(l.amount)) for l in impact.lines])

    for attempt in (1, 2):
        batch = svc.post_batch(DEMO_ORG, ["MV-DEMO-1", "MV-DEMO-2"], user_id="demo_user")
        logger.info("Batch run %d: %s", attempt, batch.to_dict())

    report = svc.reconcile(DEMO_ORG)
    logger.info("Reconciliation: scanned=%d linked=%d", report.scanned, len(report.linked))


def main():
    bootstrap_db()
    demo_postings()


if __name__ == "__main__":
    main()
