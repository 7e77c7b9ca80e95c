"""Persisted installment plans keyed by customer and reference."""
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..ingest.models import InstallmentPlan
from ..utils.logger import get_logger

logger = get_logger()

MergeFn = Callable[[Optional[InstallmentPlan]], InstallmentPlan]


class KeyedLocks:
    """One lock per key, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}

    def get(self, key: Tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class InMemoryInstallmentStore:
    """Process-local store, used in tests and when no database is configured."""

    def __init__(self):
        self._plans: Dict[Tuple[str, str], InstallmentPlan] = {}
        self._locks = KeyedLocks()

    def get(self, customer_id: str, reference_id: str) -> Optional[InstallmentPlan]:
        return self._plans.get((customer_id, reference_id))

    def update(self, customer_id: str, reference_id: str, merge_fn: MergeFn) -> InstallmentPlan:
        """Read, merge and write one plan while holding that plan's lock."""
        key = (customer_id, reference_id)
        with self._locks.get(key):
            plan = merge_fn(self._plans.get(key))
            self._plans[key] = plan
            return plan

    def list_plans(self, customer_id: str) -> List[InstallmentPlan]:
        return [plan for (customer, _), plan in sorted(self._plans.items()) if customer == customer_id]

    def clear(self, customer_id: Optional[str] = None) -> int:
        keys = [k for k in self._plans if customer_id is None or k[0] == customer_id]
        for key in keys:
            del self._plans[key]
        return len(keys)


class SqliteInstallmentStore:
    """Installment plans in a local SQLite database."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._locks = KeyedLocks()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode; transactions are opened explicitly
        return sqlite3.connect(self.db_path, timeout=30, isolation_level=None)

    def _init_db(self):
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS installment_plans (
                    customer_id TEXT NOT NULL,
                    reference_id TEXT NOT NULL,
                    plan_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (customer_id, reference_id)
                )
            """)
        finally:
            conn.close()

    def get(self, customer_id: str, reference_id: str) -> Optional[InstallmentPlan]:
        conn = self._connect()
        try:
            return self._read(conn, customer_id, reference_id)
        finally:
            conn.close()

    def update(self, customer_id: str, reference_id: str, merge_fn: MergeFn) -> InstallmentPlan:
        """
        Read, merge and write one plan atomically.

        Writers in this process serialize on a per-key lock; writers in other
        processes serialize on the database write lock taken by BEGIN IMMEDIATE.

        Args:
            customer_id: Customer identifier
            reference_id: Plan reference number
            merge_fn: Receives the stored plan (or None) and returns the new plan

        Returns:
            The stored plan
        """
        with self._locks.get((customer_id, reference_id)):
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    plan = merge_fn(self._read(conn, customer_id, reference_id))
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO installment_plans
                        (customer_id, reference_id, plan_json, updated_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        (customer_id, reference_id, json.dumps(plan.to_dict(), ensure_ascii=False),
                         datetime.now().isoformat()),
                    )
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            finally:
                conn.close()
        logger.debug(f"Stored installment plan {reference_id} for {customer_id}")
        return plan

    def list_plans(self, customer_id: str) -> List[InstallmentPlan]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT plan_json FROM installment_plans WHERE customer_id = ? ORDER BY reference_id",
                (customer_id,),
            ).fetchall()
        finally:
            conn.close()
        return [InstallmentPlan.from_dict(json.loads(row[0])) for row in rows]

    def clear(self, customer_id: Optional[str] = None) -> int:
        conn = self._connect()
        try:
            if customer_id:
                cursor = conn.execute("DELETE FROM installment_plans WHERE customer_id = ?", (customer_id,))
            else:
                cursor = conn.execute("DELETE FROM installment_plans")
            return cursor.rowcount
        finally:
            conn.close()

    @staticmethod
    def _read(conn: sqlite3.Connection, customer_id: str, reference_id: str) -> Optional[InstallmentPlan]:
        row = conn.execute(
            "SELECT plan_json FROM installment_plans WHERE customer_id = ? AND reference_id = ?",
            (customer_id, reference_id),
        ).fetchone()
        return InstallmentPlan.from_dict(json.loads(row[0])) if row else None
