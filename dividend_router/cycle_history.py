"""
Cycle History Database

SQLite log of distribution cycles.

Tables:
- cycles: One row per CycleResult
- outcomes: Per-recipient order outcomes of a cycle

Base-unit amounts are stored as TEXT to keep full precision.
"""

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from .models import CycleResult


class CycleHistoryDB:
    """
    SQLite store for cycle results

    Features:
    - Cycle + outcome logging
    - Failure lookup for manual follow-up
    - Aggregate statistics
    """

    def __init__(self, db_path: str = "distribution_history.db"):
        """
        Initialize database

        Args:
            db_path: Path to SQLite database (":memory:" for tests)
        """
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._initialize_db()
        logger.info(f"Cycle history database initialized: {self.db_path}")

    def _initialize_db(self):
        """Open connection and create tables"""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self):
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS cycles (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                status TEXT NOT NULL,
                timestamp TIMESTAMP NOT NULL,
                total_balance TEXT NOT NULL,
                transferable_amount TEXT NOT NULL,
                attempted INTEGER DEFAULT 0,
                succeeded INTEGER DEFAULT 0,
                failed INTEGER DEFAULT 0,
                skipped_low_min INTEGER DEFAULT 0,
                total_amount_used TEXT NOT NULL,
                unassigned_remainder TEXT NOT NULL,
                truncation_loss TEXT NOT NULL,
                raw_json TEXT NOT NULL,
                CONSTRAINT valid_status CHECK (status IN ('skipped_low_balance', 'completed'))
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS outcomes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                cycle_id INTEGER NOT NULL,
                address TEXT NOT NULL,
                amount_base_units TEXT NOT NULL,
                rank INTEGER,
                success BOOLEAN DEFAULT 0,
                transaction_hash TEXT,
                remote_order_id TEXT,
                error_kind TEXT,
                error_message TEXT,
                FOREIGN KEY (cycle_id) REFERENCES cycles(id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_cycles_timestamp ON cycles(timestamp)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_outcomes_cycle ON outcomes(cycle_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_outcomes_address ON outcomes(address)")

        self.conn.commit()
        logger.debug("Database tables created successfully")

    def record_cycle(self, result: CycleResult) -> int:
        """
        Record a cycle and its outcomes in one transaction

        Returns:
            Row id of the cycle
        """
        data = result.to_dict()
        try:
            with self.conn:
                cursor = self.conn.execute("""
                    INSERT INTO cycles (
                        status, timestamp, total_balance, transferable_amount,
                        attempted, succeeded, failed, skipped_low_min,
                        total_amount_used, unassigned_remainder, truncation_loss, raw_json
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    data['status'],
                    data['timestamp'],
                    data['total_balance'],
                    data['transferable_amount'],
                    data['attempted'],
                    data['succeeded'],
                    data['failed'],
                    data['skipped_low_min'],
                    data['total_amount_used'],
                    data['unassigned_remainder'],
                    data['truncation_loss'],
                    json.dumps(data),
                ))
                cycle_id = cursor.lastrowid

                self.conn.executemany("""
                    INSERT INTO outcomes (
                        cycle_id, address, amount_base_units, rank, success,
                        transaction_hash, remote_order_id, error_kind, error_message
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, [
                    (
                        cycle_id,
                        o['address'],
                        o['amount_base_units'],
                        o['rank'],
                        o['success'],
                        o['transaction_hash'],
                        o['remote_order_id'],
                        o['error_kind'],
                        o['error_message'],
                    )
                    for o in data['outcomes']
                ])
        except sqlite3.Error as e:
            logger.error(f"✗ Error recording cycle: {e}")
            raise

        logger.info(f"✓ Cycle recorded: #{cycle_id} ({data['status']})")
        return cycle_id

    def get_cycle(self, cycle_id: int) -> Optional[Dict]:
        """Full stored CycleResult dict, or None"""
        row = self.conn.execute("SELECT raw_json FROM cycles WHERE id = ?", (cycle_id,)).fetchone()
        return json.loads(row['raw_json']) if row else None

    def get_recent_cycles(self, limit: int = 10) -> List[Dict]:
        """Latest cycles, newest first (summary columns only)"""
        rows = self.conn.execute("""
            SELECT id, status, timestamp, total_balance, attempted, succeeded, failed,
                   total_amount_used, unassigned_remainder
            FROM cycles ORDER BY id DESC LIMIT ?
        """, (limit,)).fetchall()
        return [dict(row) for row in rows]

    def get_failed_outcomes(self, cycle_id: Optional[int] = None) -> List[Dict]:
        """Failed outcomes, optionally for one cycle"""
        if cycle_id is None:
            rows = self.conn.execute(
                "SELECT * FROM outcomes WHERE success = 0 ORDER BY id"
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM outcomes WHERE success = 0 AND cycle_id = ? ORDER BY id",
                (cycle_id,)
            ).fetchall()
        return [dict(row) for row in rows]

    def get_statistics(self) -> Dict[str, Any]:
        """Aggregates over all recorded cycles"""
        cursor = self.conn.cursor()

        cursor.execute("SELECT COUNT(*) FROM cycles")
        total_cycles = cursor.fetchone()[0]

        cursor.execute("SELECT COUNT(*) FROM cycles WHERE status = 'skipped_low_balance'")
        skipped_cycles = cursor.fetchone()[0]

        cursor.execute("SELECT COUNT(*), COALESCE(SUM(success), 0) FROM outcomes")
        total_orders, successful_orders = cursor.fetchone()

        # TEXT amounts are summed in Python to stay exact
        cursor.execute("SELECT amount_base_units FROM outcomes WHERE success = 1")
        total_routed = sum(int(row[0]) for row in cursor.fetchall())

        return {
            'total_cycles': total_cycles,
            'skipped_cycles': skipped_cycles,
            'total_orders': total_orders,
            'successful_orders': successful_orders,
            'failed_orders': total_orders - successful_orders,
            'success_rate': (successful_orders / total_orders * 100) if total_orders > 0 else 0,
            'total_routed_base_units': str(total_routed),
        }

    def print_statistics(self):
        stats = self.get_statistics()

        print("\n" + "=" * 80)
        print("DISTRIBUTION STATISTICS")
        print("=" * 80)
        print(f"Total Cycles:         {stats['total_cycles']}")
        print(f"Skipped (low bal.):   {stats['skipped_cycles']}")
        print(f"Orders:               {stats['total_orders']}")
        print(f"Successful:           {stats['successful_orders']}")
        print(f"Failed:               {stats['failed_orders']}")
        print(f"Success Rate:         {stats['success_rate']:.1f}%")
        print(f"Total Routed (base):  {stats['total_routed_base_units']}")
        print("=" * 80 + "\n")

    def close(self):
        """Close database connection"""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed")
