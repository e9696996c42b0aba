from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from .database import get_store
from .device_repository import DeviceRepository
from .device_service import DeviceService
from .errors import NotFoundError, PartialConsistencyError, ValidationError
from .models import ActivationStatus, Device

router = APIRouter(prefix="/api/devices", tags=["devices"])


def get_service() -> DeviceService:
    return DeviceService(DeviceRepository(get_store()))


@router.get("/", response_model=List[Device])
def list_devices(platform: Optional[str] = None, active: bool = False, service: DeviceService = Depends(get_service)):
    try:
        if platform:
            devices = service.get_devices_by_platform(platform.upper())
        elif active:
            devices = service.get_active_devices()
        else:
            devices = service.list_devices()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if platform and active:
        devices = [d for d in devices if d.activation_status == ActivationStatus.ACTIVATED.value]
    return devices


@router.get("/{guid}", response_model=Device)
def get_device(guid: str, service: DeviceService = Depends(get_service)):
    try:
        return service.get_device(guid)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Device not found")


@router.delete("/{guid}", status_code=204)
def delete_device(guid: str, service: DeviceService = Depends(get_service)):
    try:
        service.delete_device(guid)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Device not found")
    except PartialConsistencyError as e:
        # the device is gone; only the parent's child count is stale
        raise HTTPException(status_code=500, detail=str(e))
