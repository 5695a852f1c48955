from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from config.settings import Settings
from conftest import FakeExpirySource
from mcx.discovery import ContractDiscovery
from mcx.errors import DiscoveryParseError, StoreError
from mcx.expiry_dates import day_key
from mcx.models.expiry import ActiveContract
from mcx.registry import ActiveContractRegistry
from tracker_runner import CYCLE_JOB_ID, DISCOVERY_JOB_ID, TrackerRunner, next_boundary

GOLD_ROWS = [("GOLD", "29AUG2025"), ("GOLD", "26SEP2025"), ("GOLD", "31OCT2025")]


@pytest.fixture
def make_runner(isolated_env, db, chain_client):
    def _make(rows=GOLD_ROWS, error=None):
        registry = ActiveContractRegistry()
        discovery = ContractDiscovery(FakeExpirySource(rows, error), db, registry)
        return TrackerRunner(
            settings=Settings(),
            db=db,
            client=chain_client,
            registry=registry,
            discovery=discovery,
        )

    return _make


def test_next_boundary_aligns_to_minute() -> None:
    now = datetime(2025, 8, 29, 10, 15, 42, tzinfo=timezone.utc)
    assert next_boundary(now, 60) == datetime(2025, 8, 29, 10, 16, tzinfo=timezone.utc)
    # exactly on a boundary moves to the next one
    on = datetime(2025, 8, 29, 10, 16, tzinfo=timezone.utc)
    assert next_boundary(on, 60) == datetime(2025, 8, 29, 10, 17, tzinfo=timezone.utc)


def test_discovery_publishes_contracts(make_runner) -> None:
    runner = make_runner()
    result = asyncio.run(runner.run_discovery())

    assert result["success"] is True
    assert result["version"] == 1
    assert result["contracts"] == 2
    assert runner.discovery_state["consecutive_failures"] == 0


def test_discovery_failure_keeps_previous_list(make_runner, db) -> None:
    runner = make_runner()
    asyncio.run(runner.run_discovery())
    before = runner.registry.snapshot()

    runner.discovery.source = FakeExpirySource(error=DiscoveryParseError("no vTick"))
    result = asyncio.run(runner.run_discovery())

    assert result["success"] is False
    assert "no vTick" in result["error"]
    assert runner.registry.snapshot() is before
    assert runner.discovery_state["consecutive_failures"] == 1
    assert db.get_expiries()[0].expiry_dates == ("29AUG2025", "26SEP2025")


def test_cycle_isolates_failing_contract(make_runner, db, chain_client) -> None:
    chain_client.failures.add(("GOLD", "26SEP2025"))
    runner = make_runner()
    asyncio.run(runner.run_discovery())

    summary = asyncio.run(runner.run_cycle())

    assert summary["statistics"] == {"successful": 1, "failed": 1}
    assert chain_client.calls == [("GOLD", "29AUG2025"), ("GOLD", "26SEP2025")]

    record = db.get_daily_record("GOLD", day_key(db.tz))
    assert [p.value for p in record.expiry1.data] == [600]
    assert record.expiry2.data == ()

    health = runner.contract_health["GOLD:26SEP2025"]
    assert health["consecutive_failures"] == 1
    assert runner.contract_health["GOLD:29AUG2025"]["consecutive_failures"] == 0


def test_cycle_appends_every_run(make_runner, db) -> None:
    runner = make_runner()
    asyncio.run(runner.run_discovery())

    asyncio.run(runner.run_cycle())
    asyncio.run(runner.run_cycle())

    record = db.get_daily_record("GOLD", day_key(db.tz))
    assert [p.value for p in record.expiry1.data] == [600, 600]
    assert [p.value for p in record.expiry2.data] == [-250, -250]
    assert runner.cycle_count == 2
    assert runner.last_cycle["statistics"]["successful"] == 2


def test_cycle_with_no_contracts_does_nothing(make_runner, chain_client) -> None:
    runner = make_runner()
    summary = asyncio.run(runner.run_cycle())

    assert summary["skipped"] == "no active contracts"
    assert chain_client.calls == []
    assert runner.cycle_count == 0


def test_overlapping_cycle_is_skipped(make_runner, chain_client) -> None:
    runner = make_runner()
    runner.registry.publish([ActiveContract("GOLD", "29AUG2025", 1)])
    runner._cycle_running = True

    summary = asyncio.run(runner.run_cycle())

    assert summary["skipped"] == "previous cycle still running"
    assert runner.skipped_cycles == 1
    assert chain_client.calls == []


def test_scheduler_skip_event_counted(make_runner) -> None:
    runner = make_runner()
    runner._on_job_skipped(SimpleNamespace(job_id=CYCLE_JOB_ID))
    runner._on_job_skipped(SimpleNamespace(job_id=DISCOVERY_JOB_ID))
    assert runner.skipped_cycles == 1


def test_start_registers_both_jobs(make_runner) -> None:
    runner = make_runner()

    async def _start():
        scheduler = runner.start()
        try:
            return {job.id: job for job in scheduler.get_jobs()}
        finally:
            scheduler.shutdown(wait=False)

    jobs = asyncio.run(_start())

    assert set(jobs) == {DISCOVERY_JOB_ID, CYCLE_JOB_ID}
    assert jobs[CYCLE_JOB_ID].max_instances == 1
    assert jobs[DISCOVERY_JOB_ID].coalesce is True


def test_run_continuous_discovers_then_stops(make_runner, chain_client) -> None:
    runner = make_runner()

    async def _run():
        task = asyncio.create_task(runner.run_continuous())
        for _ in range(100):
            if runner.scheduler is not None:
                break
            await asyncio.sleep(0.01)
        runner.stop()
        await task

    asyncio.run(_run())

    assert runner.registry.snapshot().version == 1
    assert runner.is_running is False
    assert runner.scheduler is None
    assert chain_client.closed is True


def test_status_reports_state(make_runner) -> None:
    runner = make_runner()
    asyncio.run(runner.run_discovery())
    asyncio.run(runner.run_cycle())

    status = runner.status()

    assert status["contracts"]["count"] == 2
    assert status["cycle_count"] == 1
    assert status["upstream"]["requests_total"] == 2
    assert set(status["contract_health"]) == {"GOLD:29AUG2025", "GOLD:26SEP2025"}


@pytest.mark.parametrize(
    "error",
    [StoreError("database is locked"), RuntimeError("boom")],
)
def test_store_failure_does_not_stop_cycle(make_runner, db, monkeypatch, caplog, error) -> None:
    runner = make_runner()
    asyncio.run(runner.run_discovery())
    real_append = db.append_point

    def flaky_append(symbol, position, expiry_date, value, timestamp):
        if expiry_date == "29AUG2025":
            raise error
        return real_append(symbol, position, expiry_date, value, timestamp)

    monkeypatch.setattr(db, "append_point", flaky_append)

    summary = asyncio.run(runner.run_cycle())

    assert summary["statistics"] == {"successful": 1, "failed": 1}
    failed = [r for r in summary["results"] if not r["success"]]
    assert failed[0]["expiry_date"] == "29AUG2025"
    assert "29AUG2025" in caplog.text
    assert any(rec.levelname == "ERROR" for rec in caplog.records)

    record = db.get_daily_record("GOLD", day_key(db.tz))
    assert record.expiry1.data == ()
    assert [p.value for p in record.expiry2.data] == [-250]


def test_rolled_contracts_dropped_from_health(make_runner) -> None:
    runner = make_runner()
    asyncio.run(runner.run_discovery())
    asyncio.run(runner.run_cycle())
    assert set(runner.contract_health) == {"GOLD:29AUG2025", "GOLD:26SEP2025"}

    # August contract expired
    runner.discovery.source = FakeExpirySource([("GOLD", "26SEP2025"), ("GOLD", "31OCT2025")])
    asyncio.run(runner.run_discovery())

    assert set(runner.contract_health) == {"GOLD:26SEP2025"}
