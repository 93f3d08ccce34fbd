# db/db_manager.py
import sqlite3
import threading
import pathlib
import time
from contextlib import contextmanager
from typing import Optional, Callable

BASE_DIR = pathlib.Path(__file__).parent
SCHEMA_SQL = (BASE_DIR / "schema_posting.sql").read_text(encoding="utf-8")
DB_PATH_DEFAULT = "inventory_posting.db"
_lock = threading.Lock()
# Serializes statement execution on the shared connection across worker threads.
_db_lock = threading.RLock()

MIGRATIONS: list[tuple[int, str, Callable[[sqlite3.Connection], None] | str]] = [
    (1, "Add index on journal_lines(entry_id)", """
        CREATE INDEX IF NOT EXISTS idx_journal_lines_entry ON journal_lines(entry_id);
    """),
    (2, "Add index on relationships(to_entity_id)", """
        CREATE INDEX IF NOT EXISTS idx_relationships_to ON relationships(to_entity_id);
    """),
    (3, "Add index on audit_log(source_transaction_id)", """
        CREATE INDEX IF NOT EXISTS idx_audit_log_source ON audit_log(source_transaction_id);
    """),
    (4, "Add index on fiscal_periods(organization_id, start_date)", """
        CREATE INDEX IF NOT EXISTS idx_fiscal_periods_org_start ON fiscal_periods(organization_id, start_date);
    """),
]


class DBManager:
    _conn: Optional[sqlite3.Connection] = None
    _path: str = DB_PATH_DEFAULT
    _max_retries: int = 5
    _retry_backoff_s: float = 0.15

    @classmethod
    def configure(cls, path: str = DB_PATH_DEFAULT, max_retries: int = 5, retry_backoff_s: float = 0.15):
        cls._path = path
        cls._max_retries = max_retries
        cls._retry_backoff_s = retry_backoff_s
        cls._conn = None  # reset cached connection

    @classmethod
    def _open_connection(cls, db_path: str) -> sqlite3.Connection:
        conn = sqlite3.connect(
            db_path,
            timeout=30.0,
            isolation_level=None,
            uri=True,                  # file:memdb?mode=memory&cache=shared
            check_same_thread=False,   # batch workers share the connection under _db_lock
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        if db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL;")
            conn.execute("PRAGMA synchronous = FULL;")
            conn.execute("PRAGMA temp_store = MEMORY;")
            conn.execute("PRAGMA busy_timeout = 5000;")
        return conn

    @classmethod
    def connect(cls, path: Optional[str] = None) -> sqlite3.Connection:
        """
        Connect to the database. Cache a single connection per configured path.
        If the cached connection was closed, transparently reopen it.
        """
        db_path = path or cls._path
        with _lock:
            if cls._conn is None:
                cls._conn = cls._open_connection(db_path)
            else:
                try:
                    cls._conn.execute("SELECT 1")
                except sqlite3.ProgrammingError:
                    cls._conn = cls._open_connection(db_path)
            return cls._conn

    @classmethod
    @contextmanager
    def transaction(cls):
        with _db_lock:
            conn = cls.connect()
            cur = conn.cursor()
            attempt = 0
            while True:
                try:
                    cur.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if "locked" in str(e).lower() or "busy" in str(e).lower():
                        if attempt >= cls._max_retries:
                            cur.close()
                            raise
                        time.sleep(cls._retry_backoff_s * (2 ** attempt))
                        attempt += 1
                        continue
                    cur.close()
                    raise
            try:
                yield cur
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
            finally:
                cur.close()

    @classmethod
    def execute_script(cls, script: str, path: Optional[str] = None):
        with _db_lock:
            conn = cls.connect(path)
            cur = conn.cursor()
            try:
                cur.executescript(script)
                conn.commit()
            finally:
                cur.close()

    @classmethod
    def fetch_one(cls, sql: str, params: tuple = (), path: Optional[str] = None) -> Optional[sqlite3.Row]:
        with _db_lock:
            conn = cls.connect(path)
            cur = conn.cursor()
            try:
                cur.execute(sql, params)
                return cur.fetchone()
            finally:
                cur.close()

    @classmethod
    def fetch_all(cls, sql: str, params: tuple = (), path: Optional[str] = None) -> list[sqlite3.Row]:
        with _db_lock:
            conn = cls.connect(path)
            cur = conn.cursor()
            try:
                cur.execute(sql, params)
                return cur.fetchall()
            finally:
                cur.close()

    # --- Migrations ---

    @classmethod
    def _ensure_migrations_table(cls):
        cls.execute_script("""
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT (datetime('now')),
                description TEXT
            );
        """)

    @classmethod
    def _current_version(cls) -> int:
        cls._ensure_migrations_table()
        row = cls.fetch_one("SELECT MAX(version) AS v FROM schema_migrations")
        return int(row["v"]) if row and row["v"] is not None else 0

    @classmethod
    def _apply_migration(cls, version: int, description: str, mig: Callable[[sqlite3.Connection], None] | str):
        with cls.transaction() as cur:
            if isinstance(mig, str):
                # executescript would commit the open transaction; run statements one by one
                for stmt in (s.strip() for s in mig.split(";")):
                    if stmt:
                        cur.execute(stmt)
            else:
                mig(cur.connection)
            cur.execute("INSERT INTO schema_migrations(version, description) VALUES (?, ?)", (version, description))

    @classmethod
    def migrate(cls):
        current = cls._current_version()
        for version, description, mig in sorted(MIGRATIONS, key=lambda m: m[0]):
            if version > current:
                cls._apply_migration(version, description, mig)

    # --- Initialization ---

    @classmethod
    def initialize(cls):
        cls.execute_script(SCHEMA_SQL)
        cls.migrate()

    @classmethod
    def close(cls):
        with _lock:
            if cls._conn:
                try:
                    cls._conn.execute("PRAGMA wal_checkpoint(FULL);")
                except sqlite3.Error:
                    pass
                cls._conn.close()
                cls._conn = None
