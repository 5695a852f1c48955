#!/usr/bin/env python3
"""
Entry point of the MCX OI tracker.
Run: python main.py [mode] [options]
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from config.settings import Settings, get_settings


def setup_logging(settings: Settings):
    """Console + file logging for the whole process."""
    os.makedirs(settings.logs_dir, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.value),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(os.path.join(settings.logs_dir, 'tracker.log'), encoding='utf-8'),
            logging.StreamHandler(),
        ],
    )
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def run_tracker(settings: Settings) -> int:
    """Run the discovery + OI scheduler until interrupted."""
    from tracker_runner import TrackerRunner

    print("Starting OI tracker...")
    runner = TrackerRunner(settings=settings)
    try:
        asyncio.run(runner.run_continuous())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("👋 Stopped by user")
    return 0


def run_web(settings: Settings, host: Optional[str] = None, port: Optional[int] = None) -> int:
    """Run the read API (and, unless disabled, the tracker) under uvicorn."""
    import uvicorn
    from web.app import create_app

    host = host or settings.web.host
    port = port or settings.web.port
    print(f"Starting web server on http://{host}:{port}")
    uvicorn.run(create_app(settings), host=host, port=port, log_level="info")
    return 0


def run_discover(settings: Settings) -> int:
    """One discovery run; prints the selected contracts."""
    from tracker_runner import TrackerRunner

    async def _once():
        runner = TrackerRunner(settings=settings)
        try:
            await runner.initialize()
            result = await runner.run_discovery()
            return result, runner.registry.snapshot()
        finally:
            await runner.client.close()

    result, snapshot = asyncio.run(_once())
    if not result['success']:
        print(f"Discovery failed: {result['error']}")
        return 1

    print(f"Tracking {len(snapshot)} contracts (v{snapshot.version}):")
    for c in snapshot.contracts:
        print(f"  {c.symbol:<12} {c.expiry_date:<10} expiry{c.position}")
    return 0


def run_cycle_once(settings: Settings) -> int:
    """Discovery followed by a single OI cycle."""
    from tracker_runner import TrackerRunner

    async def _once():
        runner = TrackerRunner(settings=settings)
        try:
            await runner.initialize()
            discovery = await runner.run_discovery()
            if not discovery['success']:
                return discovery, None
            return discovery, await runner.run_cycle()
        finally:
            await runner.client.close()

    discovery, cycle = asyncio.run(_once())
    if cycle is None:
        print(f"Discovery failed: {discovery['error']}")
        return 1

    print(json.dumps(cycle, indent=2, ensure_ascii=False))
    return 0 if cycle['statistics']['failed'] == 0 else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="oi-tracker", description='MCX open-interest tracker')
    sub = parser.add_subparsers(dest='mode')

    sub.add_parser('tracker', help='Run the discovery and OI scheduler')

    web_parser = sub.add_parser('web', help='Run the read API (tracker included unless WEB_RUN_TRACKER=false)')
    web_parser.add_argument('--host', default=None, help='Host')
    web_parser.add_argument('--port', type=int, default=None, help='Port')

    sub.add_parser('discover', help='Refresh the active contract list once')
    sub.add_parser('cycle', help='Refresh contracts and run one OI cycle')
    sub.add_parser('status', help='Show the effective configuration')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.mode is None:
        parser.print_help()
        return 0

    settings = get_settings()

    if args.mode == 'status':
        settings.print_summary()
        return 0

    setup_logging(settings)

    if args.mode == 'tracker':
        return run_tracker(settings)
    if args.mode == 'web':
        return run_web(settings, args.host, args.port)
    if args.mode == 'discover':
        return run_discover(settings)
    if args.mode == 'cycle':
        return run_cycle_once(settings)

    parser.print_help()
    return 0


if __name__ == '__main__':
    sys.exit(main())
