# mcx/storage/sqlite.py

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from sqlite3 import Connection
from typing import Dict, Generator, List, Optional, Sequence
from zoneinfo import ZoneInfo

from mcx.errors import StoreError
from mcx.expiry_dates import day_key
from mcx.models.expiry import SLOT_POSITIONS, ExpirySnapshot
from mcx.models.oi_series import DailySeriesRecord, SeriesPoint, SeriesSlot
from mcx.storage.schema import SCHEMA

logger = logging.getLogger(__name__)


class OIDatabase:
    """
    SQLite store for expiry snapshots and the per-day OI series.

    Every call opens its own connection, so one instance can be shared by
    the event loop and worker threads.
    """

    def __init__(self, db_path: str, tz: ZoneInfo):
        self.db_path = str(db_path)
        self.tz = tz
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def init_db(self):
        with self.get_connection() as conn:
            conn.executescript(SCHEMA)
        # WAL lets the API read while the tracker writes
        with self.get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")
        logger.info(f"Database ready: {self.db_path}")

    @contextmanager
    def get_connection(self) -> Generator[Connection, None, None]:
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON;")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            logger.error(f"Database error: {e}")
            raise StoreError(str(e)) from e
        finally:
            if conn:
                conn.close()

    # ===== EXPIRY SNAPSHOTS =====

    def replace_expiries(self, expiries: Dict[str, Sequence[str]]):
        """Insert or overwrite the expiry list of every symbol given, in one transaction."""
        updated_at = datetime.now(timezone.utc).isoformat()
        with self.get_connection() as conn:
            conn.executemany(
                """
                INSERT INTO expiries (symbol, expiry_dates, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT (symbol) DO UPDATE SET
                    expiry_dates = excluded.expiry_dates,
                    updated_at = excluded.updated_at
                """,
                [
                    (symbol, json.dumps(list(dates)), updated_at)
                    for symbol, dates in expiries.items()
                ],
            )

    def get_expiries(self) -> List[ExpirySnapshot]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT symbol, expiry_dates FROM expiries ORDER BY symbol ASC"
            ).fetchall()

        return [
            ExpirySnapshot(
                symbol=row["symbol"],
                expiry_dates=tuple(json.loads(row["expiry_dates"])),
            )
            for row in rows
        ]

    # ===== DAILY SERIES =====

    def append_point(
        self,
        symbol: str,
        position: int,
        expiry_date: str,
        value: int,
        timestamp: datetime,
    ) -> str:
        """
        Append one point to the slot at `position` of today's record.

        The record and slot are created on first write; the slot's expiry is
        re-stamped on every write. Nothing already stored is rewritten.

        Returns:
            The day key the point was written under
        """
        if position not in SLOT_POSITIONS:
            raise ValueError(f"position must be one of {SLOT_POSITIONS}, got {position}")
        if not symbol or not expiry_date:
            raise ValueError("symbol and expiry_date are required")
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"value must be an int, got {value!r}")
        if timestamp.tzinfo is None:
            raise ValueError("timestamp must be timezone-aware")

        day = day_key(self.tz, timestamp)
        ts = timestamp.astimezone(timezone.utc).isoformat()

        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO daily_slots (symbol, date, position, expiry_date)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (symbol, date, position) DO UPDATE SET
                    expiry_date = excluded.expiry_date
                """,
                (symbol, day, position, expiry_date),
            )
            conn.execute(
                """
                INSERT INTO oi_points
                (symbol, date, position, expiry_date, value, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (symbol, day, position, expiry_date, value, ts),
            )
        return day

    def get_daily_record(self, symbol: str, day: str) -> Optional[DailySeriesRecord]:
        with self.get_connection() as conn:
            slots = conn.execute(
                """
                SELECT position, expiry_date FROM daily_slots
                WHERE symbol = ? AND date = ?
                """,
                (symbol, day),
            ).fetchall()
            if not slots:
                return None

            points = conn.execute(
                """
                SELECT position, value, timestamp FROM oi_points
                WHERE symbol = ? AND date = ?
                ORDER BY id ASC
                """,
                (symbol, day),
            ).fetchall()

        data: Dict[int, List[SeriesPoint]] = {p: [] for p in SLOT_POSITIONS}
        for row in points:
            data[row["position"]].append(
                SeriesPoint(
                    value=row["value"],
                    timestamp=datetime.fromisoformat(row["timestamp"]),
                )
            )

        expiry_by_position = {row["position"]: row["expiry_date"] for row in slots}

        def _slot(position: int) -> SeriesSlot:
            return SeriesSlot(
                expiry_date=expiry_by_position.get(position),
                data=tuple(data[position]),
            )

        return DailySeriesRecord(
            symbol=symbol,
            date=day,
            expiry1=_slot(1),
            expiry2=_slot(2),
        )
