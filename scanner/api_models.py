"""Pydantic models for the MRA API payloads."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import Device, Software


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 0
    scope: str = ""


class ApiSoftware(BaseModel):
    security_patch_level: Optional[str] = ""
    os_version: Optional[str] = ""


class ApiDevice(BaseModel):
    """One entry of ``GET /mra/api/v2/devices``. Unknown fields are ignored."""

    guid: str = ""
    oid: str = ""
    parent_device_guid: Optional[str] = ""
    activation_status: str = ""
    platform: str = ""
    software: ApiSoftware = Field(default_factory=ApiSoftware)

    # null is decoded as empty; the service rejects the record per device
    @field_validator("guid", "activation_status", "platform", mode="before")
    @classmethod
    def _null_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    # The cursor is opaque to us; some deployments send it as a number
    @field_validator("oid", mode="before")
    @classmethod
    def _oid_as_text(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @field_validator("software", mode="before")
    @classmethod
    def _software_or_empty(cls, v: Any) -> Any:
        return v if v is not None else {}

    def to_device(self) -> Device:
        return Device(
            guid=self.guid,
            oid=self.oid,
            parent_device_guid=self.parent_device_guid or "",
            activation_status=self.activation_status,
            platform=self.platform,
            software=Software(
                security_patch_level=self.software.security_patch_level or "",
                os_version=self.software.os_version or "",
            ),
        )


class DevicesResponse(BaseModel):
    count: int = 0
    devices: List[ApiDevice] = Field(default_factory=list)

    @field_validator("devices", mode="before")
    @classmethod
    def _devices_or_empty(cls, v: Any) -> Any:
        return v if v is not None else []


class Vulnerability(BaseModel):
    name: Optional[str] = ""
    description: Optional[str] = ""
    severity: Optional[str] = ""
    cve: Optional[str] = ""
    cvss: Optional[float] = None
    published_at: Optional[datetime] = None


class VulnerabilitiesResponse(BaseModel):
    count: int = 0
    vulnerabilities: List[Vulnerability] = Field(default_factory=list)
