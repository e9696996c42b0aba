import logging

from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException

from .analyzer import Analysis, Analyzer
from .api_models import VulnerabilitiesResponse
from .config import load_config
from .database import get_store
from .device_routes import get_service
from .device_routes import router as devices_router
from .device_service import DeviceService
from .errors import APIError, AuthError, ConfigError, ScannerError, ValidationError
from .models import Statistics
from .mra_api import MraClient
from .scheduler import start_scheduler
from .sync_job import run_sync_once

load_dotenv()

logger = logging.getLogger(__name__)

app = FastAPI(title="MRA Device Risk API")
app.include_router(devices_router)


def get_client() -> MraClient:
    try:
        cfg = load_config()
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return MraClient.from_config(cfg.api)


def sync_in_background():
    try:
        result = run_sync_once()
        logger.info("Background sync stored %d/%d devices", result.processed, result.total)
    except ScannerError as e:
        logger.error("Background sync failed: %s", e)


@app.on_event("startup")
def on_startup():
    cfg = load_config(local_mode=True)
    get_store()
    if cfg.app.sync_interval_minutes > 0 and cfg.api.application_key:
        start_scheduler(sync_in_background, interval_minutes=cfg.app.sync_interval_minutes)


@app.get("/api/dashboard/statistics", response_model=Statistics)
def dashboard_statistics(service: DeviceService = Depends(get_service)):
    return service.get_statistics()


@app.get("/api/dashboard/analysis", response_model=Analysis)
def dashboard_analysis(service: DeviceService = Depends(get_service)):
    return Analyzer(service).analyze_devices()


@app.post("/api/dashboard/sync")
def trigger_sync(background_tasks: BackgroundTasks):
    try:
        load_config()
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    background_tasks.add_task(sync_in_background)
    return {"status": "sync_scheduled"}


@app.get("/api/vulnerabilities/{platform}", response_model=VulnerabilitiesResponse)
def get_vulnerabilities(platform: str, version: str = "", client: MraClient = Depends(get_client)):
    try:
        return client.get_vulnerabilities(platform.upper(), version)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (APIError, AuthError) as e:
        raise HTTPException(status_code=502, detail=str(e))
