"""Device business rules on top of the repository.

This is the only place where a device record may be created, updated or
deleted. Parent/child bookkeeping is best-effort: a missing parent is fine, a
parent that exists but cannot be rewritten surfaces as
``PartialConsistencyError`` after the primary write has committed.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import List, Optional

from .device_repository import DeviceRepository
from .errors import PartialConsistencyError, StoreError, ValidationError
from .models import ActivationStatus, Device, Platform, Statistics, utc_now

logger = logging.getLogger(__name__)

PATCH_DATE_FORMAT = "%Y-%m-%d"
_PATCH_LEVEL = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
VULNERABLE_PATCH_AGE = timedelta(days=180)

_PLATFORMS = {p.value for p in Platform}
_STATUSES = {s.value for s in ActivationStatus}


def parse_patch_level(patch: str, tz=None) -> Optional[datetime]:
    """Parse a YYYY-MM-DD patch level; None unless it is exactly that shape."""
    if not _PATCH_LEVEL.fullmatch(patch):
        return None
    try:
        return datetime.strptime(patch, PATCH_DATE_FORMAT).replace(tzinfo=tz)
    except ValueError:
        return None


def validate_device(device: Optional[Device]) -> None:
    if device is None:
        raise ValidationError("device", None, "device is required")
    if not device.guid:
        raise ValidationError("guid", device.guid, "device GUID is required")
    if device.platform not in _PLATFORMS:
        raise ValidationError("platform", device.platform, "invalid platform")
    if device.activation_status not in _STATUSES:
        raise ValidationError("activation_status", device.activation_status, "invalid activation status")


def is_vulnerable(device: Device, now: Optional[datetime] = None) -> bool:
    """Service-level vulnerability check used by the statistics.

    Android: no patch level, an unparsable one, or older than 180 days.
    iOS: no version, or the first two characters compare below "15" as text.
    This is not the analyzer's three-tier classification.
    """
    now = now or utc_now()
    if device.platform == Platform.ANDROID.value:
        patch = device.software.security_patch_level
        if not patch:
            return True
        patch_date = parse_patch_level(patch, now.tzinfo)
        if patch_date is None:
            return True
        return now - patch_date > VULNERABLE_PATCH_AGE

    if device.platform == Platform.IOS.value:
        version = device.software.os_version
        if not version:
            return True
        if len(version) > 2 and version[0:2] < "15":
            return True

    return False


class DeviceService:
    def __init__(self, repo: DeviceRepository):
        self.repo = repo

    def create_device(self, device: Device) -> None:
        """Validate and upsert ``device``, then bump its parent's child count if cached."""
        validate_device(device)
        self.repo.save(device)

        if device.parent_device_guid:
            # A parent that has not been synced yet is not an error
            self._adjust_parent(device, device.parent_device_guid, +1, "device saved")

    def get_device(self, guid: str) -> Device:
        if not guid:
            raise ValidationError("guid", guid, "device GUID is required")
        return self.repo.get(guid)

    def list_devices(self) -> List[Device]:
        return self.repo.list()

    def update_device(self, device: Device) -> None:
        validate_device(device)
        existing = self.repo.get(device.guid)
        self.repo.update(device)

        if existing.parent_device_guid != device.parent_device_guid:
            errors = []
            for parent_guid, delta in ((existing.parent_device_guid, -1), (device.parent_device_guid, +1)):
                if not parent_guid:
                    continue
                try:
                    self._adjust_parent(device, parent_guid, delta, "device updated")
                except PartialConsistencyError as e:
                    errors.append(e)
            if errors:
                raise errors[0]

    def delete_device(self, guid: str) -> None:
        if not guid:
            raise ValidationError("guid", guid, "device GUID is required")
        device = self.repo.get(guid)
        self.repo.delete(guid)

        if device.parent_device_guid:
            self._adjust_parent(device, device.parent_device_guid, -1, "device deleted")

    def get_devices_by_platform(self, platform: str) -> List[Device]:
        if not platform:
            raise ValidationError("platform", platform, "platform is required")
        return self.repo.get_by_platform(platform)

    def get_active_devices(self) -> List[Device]:
        return self.repo.get_active_devices()

    def get_statistics(self, now: Optional[datetime] = None) -> Statistics:
        """Tally the whole cache in one pass."""
        now = now or utc_now()
        devices = self.repo.list()
        stats = Statistics(total_devices=len(devices), last_updated=now)

        for d in devices:
            if d.activation_status == ActivationStatus.ACTIVATED.value:
                stats.active_devices += 1

            if d.platform == Platform.ANDROID.value:
                stats.android_devices += 1
            elif d.platform == Platform.IOS.value:
                stats.ios_devices += 1

            if d.parent_device_guid:
                stats.child_devices += 1
            else:
                stats.parent_devices += 1

            if is_vulnerable(d, now):
                stats.vulnerable_devices += 1

        return stats

    def _adjust_parent(self, device: Device, parent_guid: str, delta: int, done: str) -> None:
        try:
            parent = self.repo.adjust_child_count(parent_guid, delta)
        except StoreError as e:
            logger.warning("Parent %s of %s not updated: %s", parent_guid, device.guid, e)
            raise PartialConsistencyError(
                device.guid,
                parent_guid,
                f"{done} but failed to update parent count of {parent_guid}: {e}",
            ) from e
        if parent is None:
            logger.debug("Parent %s of %s not cached yet", parent_guid, device.guid)
