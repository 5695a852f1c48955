from __future__ import annotations

from zoneinfo import ZoneInfo

import pytest

from mcx.errors import FetchError
from mcx.models.oi_series import OITotals
from mcx.storage.sqlite import OIDatabase

IST = ZoneInfo("Asia/Kolkata")


class FakeChainClient:
    """Stands in for OptionChainClient; totals keyed by (symbol, expiry)."""

    def __init__(self, totals=None, failures=None, raw=None):
        self.totals = totals or {}
        self.failures = set(failures or ())
        self.raw = raw or {}
        self.calls = []
        self.closed = False
        self.stats = {'requests_total': 0, 'requests_failed': 0}

    async def fetch_totals(self, symbol, expiry_date):
        self.calls.append((symbol, expiry_date))
        self.stats['requests_total'] += 1
        if (symbol, expiry_date) in self.failures:
            self.stats['requests_failed'] += 1
            raise FetchError("upstream down", symbol=symbol, expiry_date=expiry_date)
        return self.totals[(symbol, expiry_date)]

    async def fetch_raw(self, symbol, expiry_date):
        if (symbol, expiry_date) in self.failures:
            raise FetchError("upstream down", symbol=symbol, expiry_date=expiry_date)
        return self.raw[(symbol, expiry_date)]

    async def close(self):
        self.closed = True


class FakeExpirySource:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error

    def fetch_rows(self):
        if self.error is not None:
            raise self.error
        return list(self.rows)


@pytest.fixture
def db(tmp_path) -> OIDatabase:
    store = OIDatabase(str(tmp_path / "oi.db"), IST)
    store.init_db()
    return store


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("LOGS_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("DB_PATH", str(tmp_path / "data" / "oi.db"))
    for name in (
        "DISCOVERY_CRON",
        "TRACKER_TIMEZONE",
        "FETCH_INTERVAL_SECONDS",
        "DISCOVER_ON_STARTUP",
        "HTTP_TIMEOUT_SECONDS",
        "WEB_PORT",
        "WEB_RUN_TRACKER",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def chain_client():
    return FakeChainClient(
        totals={
            ("GOLD", "29AUG2025"): OITotals(call_oi=1500, put_oi=900),
            ("GOLD", "26SEP2025"): OITotals(call_oi=200, put_oi=450),
        }
    )
