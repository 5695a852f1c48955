# mcx/models/expiry.py

from dataclasses import dataclass
from typing import Tuple

SLOT_POSITIONS = (1, 2)


@dataclass(frozen=True)
class ExpirySnapshot:
    symbol: str
    expiry_dates: Tuple[str, ...]

    def to_dict(self) -> dict:
        return {"symbol": self.symbol, "expiryDates": list(self.expiry_dates)}


@dataclass(frozen=True)
class ActiveContract:
    symbol: str
    expiry_date: str
    position: int

    @property
    def key(self) -> str:
        return f"{self.symbol}:{self.expiry_date}"
