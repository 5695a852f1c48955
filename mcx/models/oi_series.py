# mcx/models/oi_series.py

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class OITotals:
    call_oi: int
    put_oi: int

    @property
    def difference(self) -> int:
        return self.call_oi - self.put_oi


@dataclass(frozen=True)
class SeriesPoint:
    value: int
    timestamp: datetime

    def to_dict(self) -> dict:
        return {"value": self.value, "timestamp": self.timestamp.isoformat()}


@dataclass(frozen=True)
class SeriesSlot:
    expiry_date: Optional[str] = None
    data: Tuple[SeriesPoint, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "expiryDate": self.expiry_date,
            "data": [p.to_dict() for p in self.data],
        }


@dataclass(frozen=True)
class DailySeriesRecord:
    symbol: str
    date: str
    expiry1: SeriesSlot = field(default_factory=SeriesSlot)
    expiry2: SeriesSlot = field(default_factory=SeriesSlot)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "date": self.date,
            "expiry1": self.expiry1.to_dict(),
            "expiry2": self.expiry2.to_dict(),
        }
