from typing import Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .database import Store, Tx
from .errors import StoreError
from .models import ActivationStatus, Device, utc_now


def _decode(guid: str, data: str) -> Device:
    try:
        return Device.model_validate_json(data)
    except PydanticValidationError as e:
        raise StoreError(f"decoding device {guid}: {e}") from e


def _encode(device: Device) -> str:
    return device.model_dump_json()


class DeviceRepository:
    """Device persistence on top of the key/value store.

    Every write stamps ``last_updated`` and replaces the whole JSON record.
    """

    def __init__(self, store: Store):
        self.store = store

    def save(self, device: Device) -> None:
        """Insert or overwrite ``device``."""
        device.last_updated = utc_now()
        data = _encode(device)
        with self.store.update() as tx:
            tx.set(device.guid, data)

    def get(self, guid: str) -> Device:
        """Raises NotFoundError if ``guid`` is not cached."""
        with self.store.view() as tx:
            return _decode(guid, tx.get(guid))

    def update(self, device: Device) -> None:
        """Overwrite an existing record; raises NotFoundError otherwise."""
        device.last_updated = utc_now()
        data = _encode(device)
        with self.store.update() as tx:
            tx.get(device.guid)
            tx.set(device.guid, data)

    def delete(self, guid: str) -> None:
        with self.store.update() as tx:
            tx.delete(guid)

    def list(self) -> List[Device]:
        return self._scan()

    def get_by_platform(self, platform: str) -> List[Device]:
        return self._scan(lambda d: d.platform == platform)

    def get_active_devices(self) -> List[Device]:
        return self._scan(lambda d: d.activation_status == ActivationStatus.ACTIVATED.value)

    def adjust_child_count(self, guid: str, delta: int) -> Optional[Device]:
        """Add ``delta`` to a device's child_count in one write transaction.

        Returns the updated device, or None when ``guid`` is not cached.
        """
        with self.store.update() as tx:
            if not tx.exists(guid):
                return None
            device = _decode(guid, tx.get(guid))
            device.child_count += delta
            device.last_updated = utc_now()
            tx.set(guid, _encode(device))
            return device

    def _scan(self, keep: Optional[Callable[[Device], bool]] = None) -> List[Device]:
        with self.store.view() as tx:
            return _collect(tx, keep)


def _collect(tx: Tx, keep: Optional[Callable[[Device], bool]]) -> List[Device]:
    devices = []
    for guid, data in tx.ascend():
        device = _decode(guid, data)
        if keep is None or keep(device):
            devices.append(device)
    return devices
