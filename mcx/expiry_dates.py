# mcx/expiry_dates.py

import logging
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

# MCX writes expiries as DDMONYYYY, e.g. 29AUG2025. %b matches English month
# names under the default C locale, which nothing in this project changes.
EXPIRY_FORMAT = "%d%b%Y"


def parse_expiry_date(value: str) -> date:
    """Parse an MCX expiry string ("29AUG2025") into a calendar date."""
    try:
        return datetime.strptime((value or "").strip().upper(), EXPIRY_FORMAT).date()
    except ValueError:
        raise ValueError(f"Expiry date not in DDMONYYYY form: {value!r}") from None


def nearest_expiries(values: Iterable[str], count: int = 2) -> List[str]:
    """
    Sort expiry strings chronologically and keep the first `count`.
    Strings that do not parse are dropped with a warning.
    """
    dated = []
    for v in values:
        try:
            dated.append((parse_expiry_date(v), v))
        except ValueError as e:
            logger.warning(f"Ignoring expiry: {e}")

    dated.sort(key=lambda pair: pair[0])
    return [v for _, v in dated[:count]]


def day_key(tz: ZoneInfo, moment: Optional[datetime] = None) -> str:
    """ISO date of `moment` (default: now) in the tracker timezone."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        raise ValueError("moment must be timezone-aware")
    return moment.astimezone(tz).date().isoformat()
