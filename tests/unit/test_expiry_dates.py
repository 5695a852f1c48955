from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from mcx.expiry_dates import day_key, nearest_expiries, parse_expiry_date

IST = ZoneInfo("Asia/Kolkata")


def test_parse_expiry_date() -> None:
    assert parse_expiry_date("29AUG2025") == date(2025, 8, 29)
    assert parse_expiry_date(" 05feb2026 ") == date(2026, 2, 5)
    assert parse_expiry_date("5AUG2025") == date(2025, 8, 5)


@pytest.mark.parametrize("bad", ["", "2025-08-29", "29XYZ2025", "31FEB2025", "29AUGUST2025"])
def test_parse_expiry_date_rejects(bad: str) -> None:
    with pytest.raises(ValueError):
        parse_expiry_date(bad)


def test_nearest_two_sorted_chronologically() -> None:
    dates = ["31OCT2025", "29AUG2025", "26SEP2025"]
    assert nearest_expiries(dates) == ["29AUG2025", "26SEP2025"]


def test_nearest_across_year_boundary() -> None:
    # string order would put 05JAN2026 first
    dates = ["26DEC2025", "05JAN2026", "27NOV2025"]
    assert nearest_expiries(dates, count=2) == ["27NOV2025", "26DEC2025"]


def test_nearest_drops_unparsable() -> None:
    assert nearest_expiries(["garbage", "26SEP2025"]) == ["26SEP2025"]
    assert nearest_expiries(["garbage"]) == []


def test_day_key_uses_tracker_timezone() -> None:
    # 20:00 UTC is already the next day in India
    moment = datetime(2025, 8, 28, 20, 0, tzinfo=timezone.utc)
    assert day_key(IST, moment) == "2025-08-29"
    assert day_key(ZoneInfo("UTC"), moment) == "2025-08-28"


def test_day_key_rejects_naive() -> None:
    with pytest.raises(ValueError):
        day_key(IST, datetime(2025, 8, 28, 20, 0))
