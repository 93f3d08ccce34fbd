import json
import sqlite3
import uuid
from decimal import Decimal
from typing import List, Optional

from db.db_manager import DBManager
from core.models import (
    AccountRole,
    DuplicatePostingError,
    JournalEntry,
    JournalLine,
    JournalMetadata,
    MovementLine,
    MovementTransaction,
    PostingLink,
    Side,
    StoreError,
)
from core.utils import cents, from_cents
from services.audit_service import AuditService
from services.constants import RELATIONSHIP_POSTED_TO_FINANCE, RELATIONSHIP_SMART_CODE


def _translate(e: sqlite3.Error, what: str) -> StoreError:
    if isinstance(e, sqlite3.IntegrityError) and "UNIQUE" in str(e).upper():
        return DuplicatePostingError(f"{what}: {e}")
    return StoreError(f"{what}: {type(e).__name__}: {e}")


class MovementsRepoDB:
    """
    Inventory movement documents. Read by the engine, written by the inventory side.
    """

    def fetch_by_id(self, organization_id: str, transaction_id: str, include_lines: bool = True) -> Optional[MovementTransaction]:
        row = DBManager.fetch_one(
            "SELECT * FROM movement_transactions WHERE id = ? AND organization_id = ?",
            (transaction_id, organization_id),
        )
        if not row:
            return None

        lines: List[MovementLine] = []
        if include_lines:
            for l in DBManager.fetch_all(
                "SELECT * FROM movement_lines WHERE transaction_id = ? ORDER BY line_no ASC",
                (transaction_id,),
            ):
                lines.append(MovementLine(
                    product_id=l["product_id"],
                    location_id=l["location_id"],
                    quantity=Decimal(l["quantity"]),
                    unit_cost=Decimal(l["unit_cost"]),
                    line_amount=from_cents(l["amount_cents"]),
                    description=l["description"],
                ))

        return MovementTransaction(
            id=row["id"],
            organization_id=row["organization_id"],
            movement_type=row["movement_type"],
            transaction_date=row["transaction_date"],
            currency=row["currency"],
            lines=lines,
            transaction_number=row["transaction_number"],
            metadata=json.loads(row["metadata"] or "{}"),
        )

    def insert(self, txn: MovementTransaction):
        with DBManager.transaction() as cur:
            cur.execute(
                """
                INSERT INTO movement_transactions (
                    id, organization_id, transaction_number, movement_type,
                    transaction_date, currency, metadata
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    txn.id,
                    txn.organization_id,
                    txn.transaction_number,
                    str(getattr(txn.movement_type, "value", txn.movement_type)),
                    txn.transaction_date,
                    txn.currency,
                    json.dumps(txn.metadata or {}),
                ),
            )
            cur.executemany(
                """
                INSERT INTO movement_lines (
                    transaction_id, line_no, product_id, location_id,
                    quantity, unit_cost, amount_cents, description
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (txn.id, i, l.product_id, l.location_id, str(l.quantity), str(l.unit_cost), cents(l.line_amount), l.description)
                    for i, l in enumerate(txn.lines, start=1)
                ],
            )


class JournalsRepoDB:
    """
    Journal store. Header and lines are written in a single transaction.
    """

    def __init__(self, audit: Optional[AuditService] = None):
        self._audit = audit or AuditService()

    def create_journal(self, header: JournalEntry, lines: List[JournalLine], *, actor_user_id: Optional[str] = None) -> str:
        entry_id = header.id or str(uuid.uuid4())
        meta = header.metadata.to_dict()
        try:
            with DBManager.transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO journal_entries (
                        id, organization_id, transaction_type, smart_code, transaction_date,
                        total_amount_cents, currency, status, source_transaction_id,
                        metadata, created_by
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry_id,
                        header.organization_id,
                        header.transaction_type,
                        header.smart_code,
                        header.transaction_date,
                        cents(header.total_amount),
                        header.currency,
                        header.status,
                        header.metadata.source_transaction_id,
                        json.dumps(meta, sort_keys=True),
                        actor_user_id,
                    ),
                )
                for l in lines:
                    cur.execute(
                        """
                        INSERT INTO journal_lines (
                            entry_id, line_number, side, account_role, account_code, account_name,
                            currency, amount_cents, product_id, location_id, description, smart_code
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            entry_id,
                            l.line_number,
                            l.side.value,
                            l.role.value,
                            l.account_code,
                            l.account_name,
                            l.currency,
                            cents(l.amount),
                            l.product_id,
                            l.location_id,
                            l.description,
                            l.smart_code,
                        ),
                    )

                self._audit.log_action(
                    "POST",
                    actor_user_id,
                    {
                        "entry_id": entry_id,
                        "metadata": meta,
                        "lines": [
                            {"n": l.line_number, "side": l.side.value, "account_code": l.account_code,
                             "currency": l.currency, "amount_cents": cents(l.amount)}
                            for l in lines
                        ],
                    },
                    source_transaction_id=header.metadata.source_transaction_id,
                    entry_id=entry_id,
                    cur=cur,
                )
        except sqlite3.Error as e:
            raise _translate(e, f"Journal write for {header.metadata.source_transaction_id}") from e
        return entry_id

    def find_by_source(self, organization_id: str, source_transaction_id: str) -> Optional[str]:
        row = DBManager.fetch_one(
            "SELECT id FROM journal_entries WHERE organization_id = ? AND source_transaction_id = ?",
            (organization_id, source_transaction_id),
        )
        return row["id"] if row else None

    def get(self, entry_id: str) -> Optional[JournalEntry]:
        row = DBManager.fetch_one("SELECT * FROM journal_entries WHERE id = ?", (entry_id,))
        if not row:
            return None
        lines = [
            JournalLine(
                line_number=l["line_number"],
                side=Side(l["side"]),
                role=AccountRole(l["account_role"]),
                account_code=l["account_code"],
                account_name=l["account_name"],
                currency=l["currency"],
                amount=from_cents(l["amount_cents"]),
                product_id=l["product_id"],
                location_id=l["location_id"],
                description=l["description"],
                smart_code=l["smart_code"],
            )
            for l in DBManager.fetch_all(
                "SELECT * FROM journal_lines WHERE entry_id = ? ORDER BY line_number ASC",
                (entry_id,),
            )
        ]
        return JournalEntry(
            id=row["id"],
            organization_id=row["organization_id"],
            transaction_type=row["transaction_type"],
            smart_code=row["smart_code"],
            transaction_date=row["transaction_date"],
            total_amount=from_cents(row["total_amount_cents"]),
            currency=row["currency"],
            status=row["status"],
            metadata=JournalMetadata.from_dict(json.loads(row["metadata"])),
            lines=lines,
        )

    def find_unlinked(self, organization_id: str) -> list[tuple[str, str]]:
        """
        (entry_id, source_transaction_id) for journals with no POSTED_TO_FINANCE link.
        """
        rows = DBManager.fetch_all(
            """
            SELECT je.id AS entry_id, je.source_transaction_id
            FROM journal_entries je
            LEFT JOIN relationships r
              ON r.organization_id = je.organization_id
             AND r.from_entity_id = je.source_transaction_id
             AND r.relationship_type = ?
            WHERE je.organization_id = ? AND r.id IS NULL
            ORDER BY je.created_at ASC, je.id ASC
            """,
            (RELATIONSHIP_POSTED_TO_FINANCE, organization_id),
        )
        return [(r["entry_id"], r["source_transaction_id"]) for r in rows]


class LinksRepoDB:
    """
    POSTED_TO_FINANCE relationships. UNIQUE(organization_id, from_entity_id, relationship_type) in the schema.
    """

    def create_link(
        self,
        organization_id: str,
        from_entity_id: str,
        to_entity_id: str,
        relationship_type: str = RELATIONSHIP_POSTED_TO_FINANCE,
        relationship_data: Optional[dict] = None,
    ) -> PostingLink:
        link_id = str(uuid.uuid4())
        try:
            with DBManager.transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO relationships (
                        id, organization_id, from_entity_id, to_entity_id,
                        relationship_type, smart_code, relationship_data
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        link_id,
                        organization_id,
                        from_entity_id,
                        to_entity_id,
                        relationship_type,
                        RELATIONSHIP_SMART_CODE,
                        json.dumps(relationship_data or {}, sort_keys=True, default=str),
                    ),
                )
        except sqlite3.Error as e:
            raise _translate(e, f"Link {from_entity_id} -> {to_entity_id}") from e
        return PostingLink(link_id, organization_id, from_entity_id, to_entity_id, relationship_type)

    def find_link(
        self,
        organization_id: str,
        from_entity_id: str,
        relationship_type: str = RELATIONSHIP_POSTED_TO_FINANCE,
    ) -> Optional[PostingLink]:
        row = DBManager.fetch_one(
            """
            SELECT id, organization_id, from_entity_id, to_entity_id, relationship_type
            FROM relationships
            WHERE organization_id = ? AND from_entity_id = ? AND relationship_type = ?
            """,
            (organization_id, from_entity_id, relationship_type),
        )
        if not row:
            return None
        return PostingLink(
            row["id"], row["organization_id"], row["from_entity_id"], row["to_entity_id"], row["relationship_type"]
        )
