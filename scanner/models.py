from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Platform(str, Enum):
    ANDROID = "ANDROID"
    IOS = "IOS"


class ActivationStatus(str, Enum):
    ACTIVATED = "ACTIVATED"
    DEACTIVATED = "DEACTIVATED"
    PENDING = "PENDING"


class DeviceRecord(SQLModel, table=True):
    """One row per device; ``data`` is the JSON encoding of a ``Device``."""

    __tablename__ = "device_records"

    guid: str = Field(primary_key=True)
    data: str


class Software(SQLModel):
    security_patch_level: str = ""  # ISO date, Android
    os_version: str = ""  # dotted version, iOS


class Device(SQLModel):
    """
    Cached device record.
    - platform / activation_status are plain strings here; the service layer
      rejects anything outside Platform / ActivationStatus.
    - child_count is maintained by the service, last_updated on every write.
    """

    guid: str
    oid: str = ""
    parent_device_guid: str = ""
    activation_status: str = ""
    platform: str = ""
    software: Software = Field(default_factory=Software)
    child_count: int = 0
    last_updated: Optional[datetime] = None


class Statistics(SQLModel):
    total_devices: int = 0
    active_devices: int = 0
    android_devices: int = 0
    ios_devices: int = 0
    parent_devices: int = 0
    child_devices: int = 0
    vulnerable_devices: int = 0
    last_updated: datetime = Field(default_factory=utc_now)
