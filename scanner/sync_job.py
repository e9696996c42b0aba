import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Optional

from .api_models import ApiDevice
from .config import Config, load_config
from .database import Store, get_store
from .device_repository import DeviceRepository
from .device_service import DeviceService
from .errors import SyncCancelled
from .models import Statistics
from .mra_api import MraClient
from .worker_pool import process_page

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class SyncResult:
    total: int = 0
    processed: int = 0
    pages: int = 0
    platforms: Counter = field(default_factory=Counter)
    statistics: Optional[Statistics] = None


def log_progress(processed: int, total: int) -> None:
    percent = processed / total * 100 if total else 100.0
    logger.info("Progress: %.1f%% (%d/%d devices processed)", percent, processed, total)


def sync_devices(
    client: MraClient,
    service: DeviceService,
    batch_size: int = 1000,
    worker_count: int = 5,
    cancel_event: Optional[threading.Event] = None,
    shutdown_timeout: Optional[float] = None,
    on_progress: ProgressCallback = log_progress,
) -> SyncResult:
    """Page through the device list and store every device.

    The total is probed once with a 1-item request. Pages are fetched one at
    a time with the last device's ``oid`` as the next cursor; the loop ends
    when the processed count reaches the probed total or a page comes back
    empty. The first failing device aborts the run (SyncError); devices
    already stored stay stored.
    """
    probe = client.get_devices("", 1)
    result = SyncResult(total=probe.count)
    logger.info("Found %d total devices", result.total)

    def handle(api_device: ApiDevice) -> None:
        service.create_device(api_device.to_device())

    cursor = ""
    seen_cursors = set()
    while result.processed < result.total:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelled(f"synchronization cancelled after {result.processed} device(s)")

        page = client.get_devices(cursor, batch_size)
        result.pages += 1
        if not page.devices:
            break

        page_result = process_page(
            page.devices, handle, worker_count, cancel_event=cancel_event, shutdown_timeout=shutdown_timeout
        )
        result.platforms.update(page_result.platforms)
        result.processed += len(page.devices)
        on_progress(result.processed, result.total)

        next_cursor = page.devices[-1].oid
        if not next_cursor or next_cursor == cursor or next_cursor in seen_cursors:
            logger.warning("Cursor did not advance past %r, stopping", cursor)
            break
        seen_cursors.add(next_cursor)
        cursor = next_cursor

    logger.info("Completed processing %d/%d devices in %d page(s)", result.processed, result.total, result.pages)
    return result


def run_sync_once(
    cfg: Optional[Config] = None,
    store: Optional[Store] = None,
    cancel_event: Optional[threading.Event] = None,
) -> SyncResult:
    """One full sync with the environment configuration, then a statistics scan."""
    cfg = cfg or load_config()
    store = store or get_store()
    service = DeviceService(DeviceRepository(store))
    client = MraClient.from_config(cfg.api, cancel_event=cancel_event)

    result = sync_devices(
        client,
        service,
        batch_size=cfg.app.batch_size,
        worker_count=cfg.app.worker_count,
        cancel_event=cancel_event,
        shutdown_timeout=cfg.app.shutdown_timeout,
    )
    result.statistics = service.get_statistics()
    return result
