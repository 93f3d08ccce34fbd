# services/audit_service.py
import json
import hashlib
from datetime import datetime, timezone
from typing import Optional

from db.db_manager import DBManager


def _payload_hash(payload: dict) -> str:
    """
    SHA256 of a canonical JSON payload.
    """
    s = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


class AuditService:
    """
    Centralized audit log for posting activity.
    - Writes every posting decision to audit_log
    - Keeps a hash chain (prev_hash → curr_hash) per source transaction
    - Actions: POST, SKIP, FAIL, ORPHAN, RECONCILE
    """

    def log_action(
        self,
        action: str,
        user_id: str,
        payload: dict,
        *,
        source_transaction_id: Optional[str] = None,
        entry_id: Optional[str] = None,
        cur=None,
    ):
        """
        Record an action in the audit log.
        :param action: action type (POST, SKIP, ORPHAN, RECONCILE, ...)
        :param user_id: responsible actor
        :param payload: canonical data of the operation
        :param source_transaction_id: inventory movement the action refers to
        :param entry_id: journal entry id, when one exists
        :param cur: open cursor; the row joins that transaction instead of opening its own
        """
        if cur is None:
            with DBManager.transaction() as own:
                self._insert(own, action, user_id, payload, source_transaction_id, entry_id)
        else:
            self._insert(cur, action, user_id, payload, source_transaction_id, entry_id)

    def _insert(self, cur, action, user_id, payload, source_transaction_id, entry_id):
        payload = dict(payload)
        payload["timestamp"] = datetime.now(timezone.utc).isoformat()
        curr_hash = _payload_hash(payload)

        prev_hash = None
        if source_transaction_id:
            cur.execute(
                "SELECT curr_hash FROM audit_log WHERE source_transaction_id = ? ORDER BY id DESC LIMIT 1",
                (source_transaction_id,),
            )
            row = cur.fetchone()
            if row and row["curr_hash"]:
                prev_hash = row["curr_hash"]

        cur.execute(
            """
            INSERT INTO audit_log (source_transaction_id, entry_id, action, user_id, payload, prev_hash, curr_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source_transaction_id,
                entry_id,
                action,
                user_id,
                json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str),
                prev_hash,
                curr_hash,
            ),
        )

    def verify_chain(self, source_transaction_id: str) -> bool:
        """
        Check the hash chain for a source transaction.
        True when every row hashes to its curr_hash and links to its predecessor.
        """
        rows = DBManager.fetch_all(
            "SELECT id, payload, curr_hash, prev_hash FROM audit_log WHERE source_transaction_id = ? ORDER BY id ASC",
            (source_transaction_id,),
        )
        prev_hash = None
        for row in rows:
            payload = json.loads(row["payload"])
            if _payload_hash(payload) != row["curr_hash"]:
                return False
            if row["prev_hash"] != prev_hash:
                return False
            prev_hash = row["curr_hash"]
        return True

    def actions_for(self, source_transaction_id: str) -> list[str]:
        rows = DBManager.fetch_all(
            "SELECT action FROM audit_log WHERE source_transaction_id = ? ORDER BY id ASC",
            (source_transaction_id,),
        )
        return [r["action"] for r in rows]
