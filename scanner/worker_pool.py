"""Bounded fan-out of one page of devices.

At most ``worker_count`` units run at once: the orchestrator takes a permit
from a bounded semaphore before each submit and the worker gives it back when
it finishes. ``process_page`` returns only after every submitted unit has
finished (the page barrier). Each worker returns its own small tally and the
tallies are merged here, so no counter is shared between threads.
"""

import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from .api_models import ApiDevice
from .errors import SyncCancelled, SyncError

logger = logging.getLogger(__name__)


@dataclass
class UnitResult:
    guid: str
    platform: str = ""
    error: Optional[BaseException] = None


@dataclass
class PageResult:
    processed: int = 0
    failed: int = 0
    platforms: Counter = field(default_factory=Counter)
    errors: List[Tuple[str, BaseException]] = field(default_factory=list)

    def merge(self, unit: UnitResult) -> None:
        if unit.error is None:
            self.processed += 1
            self.platforms[unit.platform] += 1
        else:
            self.failed += 1
            self.errors.append((unit.guid, unit.error))

    @property
    def first_error(self) -> Optional[Tuple[str, BaseException]]:
        return self.errors[0] if self.errors else None


def process_page(
    devices: Sequence[ApiDevice],
    handler: Callable[[ApiDevice], None],
    worker_count: int,
    cancel_event: Optional[threading.Event] = None,
    shutdown_timeout: Optional[float] = None,
) -> PageResult:
    """Run ``handler`` over ``devices`` with at most ``worker_count`` in flight.

    Raises SyncError for the first failed unit (in completion order) once the
    page has joined, or SyncCancelled if ``cancel_event`` was set before every
    unit could be submitted.
    """
    if worker_count < 1:
        raise ValueError("worker_count must be at least 1")

    permits = threading.BoundedSemaphore(worker_count)
    result = PageResult()
    merge_lock = threading.Lock()
    cancelled = False

    def run(device: ApiDevice) -> None:
        try:
            try:
                handler(device)
                unit = UnitResult(device.guid, device.platform)
            except Exception as e:
                unit = UnitResult(device.guid, device.platform, error=e)
            with merge_lock:
                result.merge(unit)
        finally:
            permits.release()

    executor = ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="device-worker")
    futures = []
    try:
        for device in devices:
            permits.acquire()
            if cancel_event is not None and cancel_event.is_set():
                permits.release()
                cancelled = True
                break
            futures.append(executor.submit(run, device))

        if cancelled:
            # in-flight units may finish, but only within the shutdown window
            _, pending = wait(futures, timeout=shutdown_timeout)
            if pending:
                logger.warning("%d device worker(s) still running at shutdown", len(pending))
        else:
            wait(futures)
    finally:
        executor.shutdown(wait=not cancelled, cancel_futures=cancelled)

    if cancelled:
        raise SyncCancelled(f"page cancelled after {len(futures)} of {len(devices)} device(s)")

    first = result.first_error
    if first is not None:
        guid, error = first
        logger.error("Processing device %s failed: %s", guid, error)
        raise SyncError(guid, f"processing device {guid}: {error}") from error

    return result
