"""
SQLite-backed internal ledger

Tables:
- projects: internal projects linked to QuickBooks jobs
- material_entries / subcontractor_entries: imported cost entries, tagged
  with the QuickBooks transaction (type, id, line id) they came from
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

from job_costs.dedup import ImportState, import_state_from_rows
from job_costs.models import AccountType, JobTransaction, ProjectRecord

logger = logging.getLogger(__name__)

ENTRY_TABLES = ('material_entries', 'subcontractor_entries')

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    qb_project_id TEXT,
    qb_project_name TEXT,
    include_in_job_costs INTEGER,
    visible INTEGER
);
CREATE INDEX IF NOT EXISTS idx_projects_qb_project_id ON projects(qb_project_id);

CREATE TABLE IF NOT EXISTS material_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id TEXT,
    vendor TEXT,
    amount REAL,
    entry_date TEXT,
    description TEXT,
    qb_transaction_id TEXT,
    qb_transaction_type TEXT,
    qb_line_id TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_material_entries_qb_txn_line
    ON material_entries(qb_transaction_type, qb_transaction_id, COALESCE(qb_line_id, ''))
    WHERE qb_transaction_id IS NOT NULL;

CREATE TABLE IF NOT EXISTS subcontractor_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id TEXT,
    vendor TEXT,
    amount REAL,
    entry_date TEXT,
    description TEXT,
    qb_transaction_id TEXT,
    qb_transaction_type TEXT,
    qb_line_id TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_subcontractor_entries_qb_txn_line
    ON subcontractor_entries(qb_transaction_type, qb_transaction_id, COALESCE(qb_line_id, ''))
    WHERE qb_transaction_id IS NOT NULL;
"""


def entry_table_for(account_type: AccountType) -> str:
    """Subcontractor costs land in subcontractor_entries, everything else in material_entries"""
    if account_type is AccountType.SUBCONTRACTOR_EXPENSE:
        return 'subcontractor_entries'
    return 'material_entries'


def _optional_bool(value) -> Optional[bool]:
    if value is None:
        return None
    return bool(value)


class SQLiteLedger:
    """Read import state and projects from the internal ledger database"""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.executescript(SCHEMA)

    def load_import_state(self) -> ImportState:
        triples = []
        with self._transaction() as conn:
            for table in ENTRY_TABLES:
                cursor = conn.execute(
                    f"SELECT qb_transaction_id, qb_transaction_type, qb_line_id FROM {table} "
                    "WHERE qb_transaction_id IS NOT NULL"
                )
                triples.extend(tuple(row) for row in cursor.fetchall())

        state = import_state_from_rows(triples)
        logger.info(f"Ledger: {len(state.keys)} imported lines, {len(state.legacy)} legacy markers")
        return state

    def load_projects(self) -> List[ProjectRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id, name, qb_project_id, qb_project_name, include_in_job_costs, visible "
                "FROM projects"
            ).fetchall()

        return [
            ProjectRecord(
                id=str(row['id']),
                name=row['name'] or '',
                external_id=row['qb_project_id'],
                external_name=row['qb_project_name'],
                include_in_job_costs=_optional_bool(row['include_in_job_costs']),
                visible=_optional_bool(row['visible']),
            )
            for row in rows
        ]

    def upsert_project(self, project: ProjectRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO projects "
                "(id, name, qb_project_id, qb_project_name, include_in_job_costs, visible) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    project.id, project.name, project.external_id, project.external_name,
                    project.include_in_job_costs, project.visible,
                ),
            )

    def record_import(self, row: JobTransaction, project_id: Optional[str] = None,
                      legacy: bool = False) -> None:
        """Record an imported row; legacy=True writes a whole-transaction marker"""
        table = entry_table_for(row.account_type)
        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO {table} "
                "(project_id, vendor, amount, entry_date, description, "
                "qb_transaction_id, qb_transaction_type, qb_line_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    project_id, row.vendor_name, float(row.amount), row.date, row.description,
                    row.external_txn_id, row.external_txn_type, None if legacy else row.line_id,
                ),
            )
