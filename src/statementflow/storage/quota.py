"""Usage quota checks for external services."""
import sqlite3
import threading
from datetime import date
from pathlib import Path
from typing import Callable

from ..utils.logger import get_logger

logger = get_logger()


class UnlimitedQuota:
    """Always grants."""

    def try_acquire(self, service: str) -> bool:
        return True


class DailyQuota:
    """Per-service daily call limit with counters kept in SQLite."""

    def __init__(self, db_path: Path, daily_limit: int = 500, today: Callable[[], date] = date.today):
        """
        Initialize quota.

        Args:
            db_path: SQLite database file
            daily_limit: Calls allowed per service per day
            today: Date provider
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.daily_limit = daily_limit
        self.today = today
        self._lock = threading.Lock()
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS service_usage (
                    service TEXT NOT NULL,
                    day TEXT NOT NULL,
                    count INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (service, day)
                )
            """)
            conn.commit()

    def try_acquire(self, service: str) -> bool:
        """Count one call against today's limit; False when the limit is reached."""
        day = self.today().isoformat()
        with self._lock:
            conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT count FROM service_usage WHERE service = ? AND day = ?", (service, day)
                ).fetchone()
                used = row[0] if row else 0
                if used >= self.daily_limit:
                    conn.execute("COMMIT")
                    logger.warning(f"Daily quota reached for {service}: {used}/{self.daily_limit}")
                    return False
                conn.execute(
                    """
                    INSERT INTO service_usage (service, day, count) VALUES (?, ?, 1)
                    ON CONFLICT(service, day) DO UPDATE SET count = count + 1
                    """,
                    (service, day),
                )
                conn.execute("COMMIT")
                return True
            finally:
                conn.close()

    def usage(self, service: str) -> int:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT count FROM service_usage WHERE service = ? AND day = ?",
                (service, self.today().isoformat()),
            ).fetchone()
        return row[0] if row else 0
