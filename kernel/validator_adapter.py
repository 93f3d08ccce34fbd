from typing import FrozenSet, Iterable, Optional

from db.db_manager import DBManager
from core.models import AccountRole, GLAccount, GLAccountMap, LedgerConfigError


class OrgConfigRepoDB:
    """
    Per-organization posting configuration: GL account map and supported currencies.
    """

    def account_map(self, organization_id: str) -> GLAccountMap:
        rows = DBManager.fetch_all(
            "SELECT role, account_code, account_name FROM org_gl_accounts WHERE organization_id = ?",
            (organization_id,),
        )
        by_role = {r["role"]: GLAccount(r["account_code"], r["account_name"]) for r in rows}
        missing = [role.value for role in AccountRole if role.value not in by_role]
        if missing:
            raise LedgerConfigError(
                f"GL account map incomplete for organization {organization_id}: missing {', '.join(missing)}"
            )
        return GLAccountMap(**{role.value: by_role[role.value] for role in AccountRole})

    def save_account_map(self, organization_id: str, account_map: GLAccountMap):
        with DBManager.transaction() as cur:
            for role in AccountRole:
                account = account_map.account_for(role)
                cur.execute(
                    """
                    INSERT INTO org_gl_accounts (organization_id, role, account_code, account_name)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(organization_id, role) DO UPDATE
                    SET account_code = excluded.account_code, account_name = excluded.account_name
                    """,
                    (organization_id, role.value, account.code, account.name),
                )

    def supported_currencies(self, organization_id: str) -> FrozenSet[str]:
        rows = DBManager.fetch_all(
            "SELECT currency FROM org_currencies WHERE organization_id = ?",
            (organization_id,),
        )
        return frozenset(r["currency"] for r in rows)

    def set_supported_currencies(self, organization_id: str, currencies: Iterable[str]):
        with DBManager.transaction() as cur:
            cur.execute("DELETE FROM org_currencies WHERE organization_id = ?", (organization_id,))
            cur.executemany(
                "INSERT INTO org_currencies (organization_id, currency) VALUES (?, ?)",
                [(organization_id, c.upper()) for c in currencies],
            )


class FiscalCalendarRepoDB:
    """
    Fiscal period openness by date.
    A closed period covering the date wins over an open one; no covering period yields None.
    """

    def period_status(self, organization_id: str, iso_date: str) -> Optional[str]:
        rows = DBManager.fetch_all(
            """
            SELECT status FROM fiscal_periods
            WHERE organization_id = ?
              AND date(?) BETWEEN start_date AND end_date
            """,
            (organization_id, iso_date),
        )
        statuses = {r["status"] for r in rows}
        if "closed" in statuses:
            return "closed"
        if "open" in statuses:
            return "open"
        return None

    def open_period(self, organization_id: str, period_code: str, start_date: str, end_date: str):
        self._upsert(organization_id, period_code, start_date, end_date, "open")

    def close_period(self, organization_id: str, period_code: str):
        with DBManager.transaction() as cur:
            cur.execute(
                "UPDATE fiscal_periods SET status = 'closed' WHERE organization_id = ? AND period_code = ?",
                (organization_id, period_code),
            )
            if cur.rowcount == 0:
                raise LedgerConfigError(f"Fiscal period {period_code} not found for organization {organization_id}")

    def open_year(self, organization_id: str, year: int):
        self.open_period(organization_id, str(year), f"{year}-01-01", f"{year}-12-31")

    def _upsert(self, organization_id, period_code, start_date, end_date, status):
        with DBManager.transaction() as cur:
            cur.execute(
                """
                INSERT INTO fiscal_periods (organization_id, period_code, start_date, end_date, status)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(organization_id, period_code) DO UPDATE
                SET start_date = excluded.start_date, end_date = excluded.end_date, status = excluded.status
                """,
                (organization_id, period_code, start_date, end_date, status),
            )
