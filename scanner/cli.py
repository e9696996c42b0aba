"""Command-line entry point.

Default mode syncs the device inventory from the MRA API into the local cache
and prints a risk summary. ``--local`` skips the network and prints the full
analysis of the cache as JSON.
"""

import argparse
import logging
import signal
import sys
import threading
from typing import Optional

from . import report
from .analyzer import Analyzer
from .config import Config, load_config
from .database import Store
from .device_repository import DeviceRepository
from .device_service import DeviceService
from .errors import ScannerError, SyncCancelled
from .logging_config import setup_logging
from .mra_api import MraClient
from .scheduler import start_scheduler, stop_scheduler
from .sync_job import sync_devices

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mra-scanner",
        description="Sync mobile devices from the MRA API into a local cache and analyze their risk.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  mra-scanner\n"
            "  mra-scanner --local\n"
            "  mra-scanner --interval 15\n"
        ),
    )
    parser.add_argument(
        "--local",
        action="store_true",
        default=False,
        help="Read from the local database instead of the API",
    )
    parser.add_argument(
        "--interval",
        type=int,
        metavar="MINUTES",
        default=None,
        help="Keep running and re-sync every MINUTES (default: SYNC_INTERVAL_MINUTES, 0 = once)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Debug logging with timestamps",
    )
    return parser.parse_args(argv)


def install_signal_handlers(cancel_event: threading.Event) -> None:
    def _handler(signum, frame):
        logger.info("Shutting down gracefully...")
        cancel_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run_local(service: DeviceService) -> None:
    analysis = Analyzer(service).analyze_devices()
    report.print_analysis_json(analysis)


def run_sync(cfg: Config, service: DeviceService, cancel_event: threading.Event) -> None:
    client = MraClient.from_config(cfg.api, cancel_event=cancel_event)
    result = sync_devices(
        client,
        service,
        batch_size=cfg.app.batch_size,
        worker_count=cfg.app.worker_count,
        cancel_event=cancel_event,
        shutdown_timeout=cfg.app.shutdown_timeout,
    )
    report.console.print(f"\nCompleted processing {result.processed}/{result.total} devices")
    report.print_basic_stats(Analyzer(service).analyze_devices())
    report.print_statistics(service.get_statistics())


def run_periodic(cfg: Config, service: DeviceService, cancel_event: threading.Event, interval: int) -> None:
    def job():
        try:
            run_sync(cfg, service, cancel_event)
        except SyncCancelled:
            logger.info("Sync cancelled")
        except ScannerError as e:
            logger.error("Scheduled sync failed: %s", e)

    run_sync(cfg, service, cancel_event)
    start_scheduler(job, interval_minutes=interval)
    try:
        cancel_event.wait()
    finally:
        stop_scheduler(wait=True)


def main(argv=None, cancel_event: Optional[threading.Event] = None) -> int:
    args = parse_args(argv)
    owns_signals = cancel_event is None
    cancel_event = cancel_event or threading.Event()

    try:
        cfg = load_config(local_mode=args.local)
    except ScannerError as e:
        setup_logging(verbose=args.verbose)
        report.console.print(f"Error loading configuration: {e}", style="red", markup=False)
        return 1

    setup_logging(cfg.app.log_level, verbose=args.verbose)
    if owns_signals and threading.current_thread() is threading.main_thread():
        install_signal_handlers(cancel_event)

    interval = args.interval if args.interval is not None else cfg.app.sync_interval_minutes
    store = None
    try:
        store = Store(cfg.database.path, cfg.database.max_connections)
        service = DeviceService(DeviceRepository(store))
        if args.local:
            run_local(service)
        elif interval > 0:
            run_periodic(cfg, service, cancel_event, interval)
        else:
            run_sync(cfg, service, cancel_event)
    except SyncCancelled as e:
        report.console.print(str(e), style="yellow", markup=False)
        return 1
    except ScannerError as e:
        report.console.print(f"Error: {e}", style="red", markup=False)
        return 1
    finally:
        if store is not None:
            store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
