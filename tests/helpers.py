from decimal import Decimal
from typing import Iterable, Optional

from core.models import MovementLine, MovementTransaction
from db.db_manager import DBManager
from kernel.store_adapter import MovementsRepoDB
from kernel.validator_adapter import FiscalCalendarRepoDB, OrgConfigRepoDB
from services.constants import DEFAULT_ACCOUNT_MAP

ORG = "org-test"
POSTING_DATE = "2025-03-15"


def seed_org(org_id: str, currencies: Iterable[str] = ("AED",), year: int = 2025):
    OrgConfigRepoDB().save_account_map(org_id, DEFAULT_ACCOUNT_MAP)
    OrgConfigRepoDB().set_supported_currencies(org_id, currencies)
    FiscalCalendarRepoDB().open_year(org_id, year)


def line(qty, cost, product_id="SKU-1", location_id="LOC-1", description=None) -> MovementLine:
    qty = Decimal(str(qty))
    cost = Decimal(str(cost))
    return MovementLine(
        product_id=product_id,
        location_id=location_id,
        quantity=qty,
        unit_cost=cost,
        line_amount=qty * cost,
        description=description,
    )


def make_movement(
    txn_id="MV-1",
    movement_type="RECEIPT",
    lines=None,
    org_id=ORG,
    date_=POSTING_DATE,
    currency="AED",
    metadata: Optional[dict] = None,
) -> MovementTransaction:
    return MovementTransaction(
        id=txn_id,
        organization_id=org_id,
        movement_type=movement_type,
        transaction_date=date_,
        currency=currency,
        lines=lines if lines is not None else [line(100, "12.50")],
        transaction_number=f"NO-{txn_id}",
        metadata=metadata or {},
    )


def store_movement(**kwargs) -> MovementTransaction:
    txn = make_movement(**kwargs)
    MovementsRepoDB().insert(txn)
    return txn


def count_rows(table: str, where: str = "1=1", params: tuple = ()) -> int:
    row = DBManager.fetch_one(f"SELECT COUNT(*) AS c FROM {table} WHERE {where}", params)
    return int(row["c"])


def sides(lines):
    return [(l.side.value, l.role.value, l.amount) for l in lines]
