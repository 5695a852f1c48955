#!/usr/bin/env python3
"""
Main OI tracker orchestrator.
Coordinates: contract discovery → option chain fetch → daily series storage.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from apscheduler.events import EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config.settings import Settings, get_settings
from mcx.discovery import ContractDiscovery
from mcx.errors import DiscoveryError, FetchError, StoreError
from mcx.models.expiry import ActiveContract
from mcx.registry import ActiveContractRegistry, ContractSnapshot
from mcx.sources.expiries import ExpirySource
from mcx.sources.option_chain import OptionChainClient
from mcx.storage.sqlite import OIDatabase

logger = logging.getLogger(__name__)

DISCOVERY_JOB_ID = "contract_discovery"
CYCLE_JOB_ID = "oi_cycle"


def next_boundary(now: datetime, interval_seconds: int) -> datetime:
    """First instant after `now` that is a whole multiple of the interval on the wall clock."""
    epoch = int(now.timestamp())
    nxt = (epoch // interval_seconds + 1) * interval_seconds
    return datetime.fromtimestamp(nxt, tz=now.tzinfo)


class TrackerRunner:
    """
    Owns the tracker lifecycle: daily discovery and the per-minute OI cycle.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        db: Optional[OIDatabase] = None,
        client: Optional[OptionChainClient] = None,
        registry: Optional[ActiveContractRegistry] = None,
        discovery: Optional[ContractDiscovery] = None,
    ):
        """Wire up every component, building defaults from settings."""
        self.settings = settings or get_settings()
        self.tz = self.settings.tzinfo

        self.db = db or OIDatabase(self.settings.database.path, self.tz)
        self.client = client or OptionChainClient(
            url=self.settings.source.option_chain_url,
            timeout_seconds=self.settings.source.http_timeout_seconds,
            user_agent=self.settings.source.user_agent,
        )
        self.registry = registry or ActiveContractRegistry()
        self.discovery = discovery or ContractDiscovery(
            ExpirySource(
                url=self.settings.source.discovery_url,
                timeout=self.settings.source.http_timeout_seconds,
                user_agent=self.settings.source.user_agent,
            ),
            self.db,
            self.registry,
        )

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._stop_event = asyncio.Event()

        # Runtime state
        self.is_running = False
        self._cycle_running = False
        self._discovery_running = False
        self.cycle_count = 0
        self.skipped_cycles = 0
        self.last_cycle: Optional[Dict] = None
        self.contract_health: Dict[str, Dict] = {}
        self.discovery_state = {
            'runs': 0,
            'last_run_at': None,
            'last_success_at': None,
            'last_error': None,
            'consecutive_failures': 0,
        }

    async def initialize(self):
        """Prepare storage."""
        await asyncio.to_thread(self.db.init_db)
        logger.info("✅ Storage initialized")

    # ===== DISCOVERY =====

    async def run_discovery(self) -> Dict:
        """
        Refresh the active contract list.
        Never raises: a failed run keeps the previous list and stored expiries.
        """
        result = {
            'success': False,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'version': self.registry.snapshot().version,
            'contracts': 0,
            'error': None,
        }

        if self._discovery_running:
            logger.warning("⚠️  Discovery already running, trigger skipped")
            result['error'] = "already running"
            return result

        self._discovery_running = True
        self.discovery_state['runs'] += 1
        self.discovery_state['last_run_at'] = result['timestamp']

        try:
            logger.info("🔄 Fetching fresh expiry data...")
            snapshot = await asyncio.to_thread(self.discovery.run)

            result['success'] = True
            result['version'] = snapshot.version
            result['contracts'] = len(snapshot)

            self.discovery_state['last_success_at'] = result['timestamp']
            self.discovery_state['consecutive_failures'] = 0
            self.discovery_state['last_error'] = None
            self._prune_health(snapshot)

        except (DiscoveryError, StoreError) as e:
            result['error'] = str(e)
            logger.critical(
                f"❌ Failed to update expiry data, keeping previous list "
                f"(v{result['version']}): {e}"
            )
        except Exception as e:
            result['error'] = repr(e)
            logger.critical("❌ Unexpected discovery failure", exc_info=True)
        finally:
            self._discovery_running = False

        if not result['success']:
            self.discovery_state['consecutive_failures'] += 1
            self.discovery_state['last_error'] = result['error']

        return result

    # ===== OI CYCLE =====

    async def process_contract(self, contract: ActiveContract) -> Dict:
        """
        Fetch and store one contract.
        Returns the outcome; errors are recorded, never raised.
        """
        result = {
            'symbol': contract.symbol,
            'expiry_date': contract.expiry_date,
            'position': contract.position,
            'success': False,
            'value': None,
            'timestamp': None,
            'error': None,
        }

        try:
            totals = await self.client.fetch_totals(contract.symbol, contract.expiry_date)
            timestamp = datetime.now(timezone.utc)

            await asyncio.to_thread(
                self.db.append_point,
                contract.symbol,
                contract.position,
                contract.expiry_date,
                totals.difference,
                timestamp,
            )

            result['success'] = True
            result['value'] = totals.difference
            result['timestamp'] = timestamp.isoformat()
            logger.debug(f"Updated data for {contract.symbol} - {contract.expiry_date}")

        except FetchError as e:
            result['error'] = str(e)
            logger.warning(f"⚠️  Skipping contract {contract.symbol} - {contract.expiry_date}: {e}")
        except StoreError as e:
            result['error'] = str(e)
            logger.error(f"❌ Could not store {contract.symbol} - {contract.expiry_date}: {e}")
        except Exception as e:
            result['error'] = repr(e)
            logger.exception(f"❌ Unexpected error for {contract.symbol} - {contract.expiry_date}")

        self._record_health(contract, result)
        return result

    def _record_health(self, contract: ActiveContract, result: Dict):
        health = self.contract_health.setdefault(contract.key, {
            'symbol': contract.symbol,
            'expiry_date': contract.expiry_date,
            'consecutive_failures': 0,
            'total_failures': 0,
            'last_error': None,
            'last_success_at': None,
        })
        health['position'] = contract.position

        if result['success']:
            health['consecutive_failures'] = 0
            health['last_success_at'] = result['timestamp']
        else:
            health['consecutive_failures'] += 1
            health['total_failures'] += 1
            health['last_error'] = result['error']

    def _prune_health(self, snapshot: ContractSnapshot):
        # Contracts that rolled off the list
        active = {c.key for c in snapshot.contracts}
        for key in list(self.contract_health):
            if key not in active:
                del self.contract_health[key]

    async def run_cycle(self) -> Dict:
        """Fetch and store every active contract, one after another."""
        cycle_start = datetime.now(timezone.utc)
        snapshot = self.registry.snapshot()

        summary = {
            'cycle': None,
            'timestamp': cycle_start.isoformat(),
            'version': snapshot.version,
            'skipped': None,
            'duration': 0.0,
            'results': [],
            'statistics': {'successful': 0, 'failed': 0},
        }

        if self._cycle_running:
            self.skipped_cycles += 1
            summary['skipped'] = "previous cycle still running"
            logger.warning(f"⚠️  OI cycle skipped: previous cycle still running ({self.skipped_cycles} skipped so far)")
            return summary

        if not snapshot.contracts:
            summary['skipped'] = "no active contracts"
            logger.warning("⚠️  Skipping data fetch cycle: active contract list is empty.")
            return summary

        self._cycle_running = True
        self.cycle_count += 1
        summary['cycle'] = self.cycle_count

        try:
            logger.info(f"🔄 CYCLE #{self.cycle_count}: fetching OI for {len(snapshot)} contracts...")

            for contract in snapshot.contracts:
                summary['results'].append(await self.process_contract(contract))
        finally:
            self._cycle_running = False

        successful = sum(1 for r in summary['results'] if r['success'])
        summary['statistics'] = {
            'successful': successful,
            'failed': len(summary['results']) - successful,
        }
        summary['duration'] = (datetime.now(timezone.utc) - cycle_start).total_seconds()
        self.last_cycle = {k: v for k, v in summary.items() if k != 'results'}

        logger.info(
            f"📊 CYCLE #{self.cycle_count}: {successful}/{len(summary['results'])} stored "
            f"in {summary['duration']:.2f} sec"
        )
        return summary

    # ===== SCHEDULING =====

    def _on_job_skipped(self, event):
        if event.job_id == CYCLE_JOB_ID:
            self.skipped_cycles += 1
        logger.warning(f"⚠️  Scheduled job {event.job_id} skipped: previous run still in progress")

    def start(self) -> AsyncIOScheduler:
        """Schedule the daily discovery and the OI cycle. Needs a running event loop."""
        cfg = self.settings.scheduler
        interval = cfg.fetch_interval_seconds

        scheduler = AsyncIOScheduler(timezone=self.tz)
        scheduler.add_listener(self._on_job_skipped, EVENT_JOB_MAX_INSTANCES)

        scheduler.add_job(
            self.run_discovery,
            CronTrigger.from_crontab(cfg.daily_discovery_cron, timezone=self.tz),
            id=DISCOVERY_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.run_cycle,
            IntervalTrigger(
                seconds=interval,
                start_date=next_boundary(datetime.now(self.tz), interval),
                timezone=self.tz,
            ),
            id=CYCLE_JOB_ID,
            max_instances=1,
            coalesce=True,
        )

        scheduler.start()
        self.scheduler = scheduler

        logger.info(f"Scheduled daily job: expiry list refresh at '{cfg.daily_discovery_cron}' ({cfg.timezone})")
        logger.info(f"Scheduled OI job: every {interval} seconds")
        return scheduler

    async def run_continuous(self):
        """Run until stop() is called."""
        self.is_running = True
        self._stop_event.clear()

        try:
            await self.initialize()
        except StoreError as e:
            logger.error(f"❌ Could not initialize storage: {e}")
            self.is_running = False
            return

        if self.settings.scheduler.discover_on_startup:
            await self.run_discovery()

        self.start()
        logger.info("🚀 Tracker running")

        await self._stop_event.wait()
        await self.shutdown()

    def stop(self):
        """Ask run_continuous() to finish."""
        self.is_running = False
        self._stop_event.set()

    async def shutdown(self):
        """Stop the scheduler and close connections."""
        logger.info("🔚 Shutting down tracker...")

        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None

        await self.client.close()
        self.is_running = False
        logger.info("✅ Tracker stopped.")

    def status(self) -> Dict:
        """Observable state of the tracker."""
        snapshot = self.registry.snapshot()
        return {
            'running': self.is_running,
            'cycle_running': self._cycle_running,
            'cycle_count': self.cycle_count,
            'skipped_cycles': self.skipped_cycles,
            'last_cycle': self.last_cycle,
            'contracts': {
                'version': snapshot.version,
                'published_at': snapshot.published_at.isoformat() if snapshot.published_at else None,
                'count': len(snapshot),
            },
            'discovery': dict(self.discovery_state),
            'contract_health': {k: dict(v) for k, v in self.contract_health.items()},
            'upstream': dict(getattr(self.client, 'stats', {})),
        }
