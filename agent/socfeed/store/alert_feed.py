import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Dict, Iterable, List, Optional

import aiosqlite
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..utils.logging import get_logger
from .models import Alert, AlertType, ensure_utc

logger = get_logger("alert_feed")

ALERTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    message TEXT NOT NULL,
    type TEXT NOT NULL,
    acknowledged INTEGER DEFAULT 0,
    source_system TEXT NOT NULL,
    risk_score INTEGER DEFAULT 0,
    is_duplicate INTEGER DEFAULT 0,
    related_alerts TEXT DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_alerts_timestamp ON alerts(timestamp DESC);
"""


class AlertRow(BaseModel):
    id: str = Field(min_length=1)
    timestamp: datetime
    message: str
    type: AlertType
    acknowledged: bool = False
    source_system: str
    risk_score: int = Field(default=0, ge=0, le=100)
    is_duplicate: bool = False
    related_alerts: List[str] = Field(default_factory=list)

    @field_validator("related_alerts", mode="before")
    @classmethod
    def _decode_related(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return json.loads(value or "[]")
        return value

    def to_alert(self) -> Alert:
        return Alert(
            id=self.id,
            timestamp=ensure_utc(self.timestamp),
            message=self.message,
            type=self.type,
            source_system=self.source_system,
            risk_score=self.risk_score,
            acknowledged=self.acknowledged,
            is_duplicate=self.is_duplicate,
            related_alerts=[r for r in self.related_alerts if r != self.id],
        )


def merge_alerts(held: Iterable[Alert], incoming: Iterable[Alert]) -> List[Alert]:
    """
    Merge a re-fetched alert set into the alerts already held.

    Per id the entry with the newer timestamp wins and a tie goes to the
    incoming row. Operator acknowledgement and the duplicate flag never
    revert, so both are OR-ed across the two copies. The result is sorted
    newest-first.
    """
    merged: Dict[str, Alert] = {alert.id: alert for alert in held}

    for alert in incoming:
        current = merged.get(alert.id)
        if current is None:
            merged[alert.id] = alert
            continue

        if ensure_utc(alert.timestamp) >= ensure_utc(current.timestamp):
            winner, loser = alert, current
        else:
            winner, loser = current, alert
        winner.acknowledged = winner.acknowledged or loser.acknowledged
        winner.is_duplicate = winner.is_duplicate or loser.is_duplicate
        merged[alert.id] = winner

    return sorted(merged.values(), key=lambda a: ensure_utc(a.timestamp), reverse=True)


class AlertFeed(ABC):
    """An external alert store that announces row-level changes."""

    async def open(self):
        pass

    async def close(self):
        pass

    @abstractmethod
    async def fetch_alerts(self) -> List[Alert]:
        """All alerts, newest first."""

    @abstractmethod
    def changes(self) -> AsyncIterator[None]:
        """Yield once for every observed change to the alerts table."""


class SQLiteAlertFeed(AlertFeed):
    """
    Alert store backed by a SQLite file shared with other writers.

    SQLite has no push notifications, so changes made by other connections
    are detected by polling ``PRAGMA data_version``, which moves whenever
    another connection commits to the database.
    """

    def __init__(self, db_path: str, poll_interval: float = 2.0):
        self.db_path = db_path
        self.poll_interval = poll_interval
        self._db: Optional[aiosqlite.Connection] = None

    async def open(self):
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(ALERTS_SCHEMA)
        await self._db.commit()

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None

    async def fetch_alerts(self) -> List[Alert]:
        alerts = []
        async with self._db.execute("SELECT * FROM alerts ORDER BY timestamp DESC") as cursor:
            rows = await cursor.fetchall()

        for row in rows:
            try:
                alerts.append(AlertRow(**dict(row)).to_alert())
            except (ValidationError, ValueError) as e:
                logger.warning(f"Dropping malformed alert row {row['id']!r}: {e}")
        return alerts

    async def changes(self) -> AsyncIterator[None]:
        last = await self._data_version()
        while True:
            await asyncio.sleep(self.poll_interval)
            current = await self._data_version()
            if current != last:
                last = current
                yield

    async def _data_version(self) -> int:
        async with self._db.execute("PRAGMA data_version") as cursor:
            row = await cursor.fetchone()
            return row[0]
