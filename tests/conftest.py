"""Shared fixtures: a temporary SQLite store and a scripted fake of the MRA API."""

import json
from typing import Dict, List, Optional
from urllib.parse import urlparse

import pytest
import requests

from scanner.database import Store
from scanner.device_repository import DeviceRepository
from scanner.device_service import DeviceService
from scanner.models import Device, Software
from scanner.mra_api import MraClient


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: Optional[str] = None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class SyntheticMraApi:
    """Stands in for ``requests.Session`` against the MRA endpoints.

    Devices are served in ``oid`` order; ``failures`` maps an ``oid`` cursor
    ("" for the first page) to a list of status codes (or exceptions) returned
    before the real page.
    """

    def __init__(self, devices: List[dict], declared_total: Optional[int] = None, expires_in: int = 3600):
        self.devices = sorted(devices, key=lambda d: int(d["oid"]))
        self.declared_total = len(devices) if declared_total is None else declared_total
        self.expires_in = expires_in
        self.failures: Dict[str, list] = {}
        self.token_status = 200
        self.token_calls = 0
        self.calls: List[dict] = []
        self.vulnerabilities: List[dict] = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.token_calls += 1
        if self.token_status != 200:
            return FakeResponse(self.token_status, text="invalid application key")
        return FakeResponse(
            200,
            {
                "access_token": f"token-{self.token_calls}",
                "token_type": "Bearer",
                "expires_in": self.expires_in,
                "scope": "mra",
            },
        )

    def request(self, method, url, params=None, headers=None, timeout=None):
        params = dict(params or {})
        path = urlparse(url).path
        self.calls.append({"method": method, "path": path, "params": params, "headers": dict(headers or {})})

        if path.startswith("/mra/api/v2/os-vulns/"):
            return FakeResponse(200, {"count": len(self.vulnerabilities), "vulnerabilities": self.vulnerabilities})

        cursor = params.get("oid", "")
        pending = self.failures.get(cursor)
        if pending:
            failure = pending.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return FakeResponse(failure, text=f"status {failure}")

        after = int(cursor) if cursor else -1
        page = [d for d in self.devices if int(d["oid"]) > after][: int(params["limit"])]
        return FakeResponse(200, {"count": self.declared_total, "devices": page})

    def device_calls(self) -> List[dict]:
        return [c for c in self.calls if c["path"] == "/mra/api/v2/devices"]


def api_device(index: int, platform: str = "ANDROID", parent: str = "", **software) -> dict:
    return {
        "guid": f"device-{index:04d}-guid",
        "oid": str(index),
        "parent_device_guid": parent,
        "activation_status": "ACTIVATED",
        "platform": platform,
        "software": software or {"security_patch_level": "2024-01-01"},
    }


ENV_KEYS = (
    "API_BASE_URL",
    "APPLICATION_KEY",
    "API_TIMEOUT",
    "API_MAX_RETRIES",
    "API_RETRY_DELAY",
    "DB_PATH",
    "DB_MAX_CONNECTIONS",
    "APP_ENV",
    "LOG_LEVEL",
    "WORKER_COUNT",
    "BATCH_SIZE",
    "SHUTDOWN_TIMEOUT",
    "SYNC_INTERVAL_MINUTES",
)


@pytest.fixture
def clean_env(monkeypatch):
    """No scanner variables set and no .env file loaded."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("scanner.config.load_dotenv", lambda: None)
    return monkeypatch


@pytest.fixture
def store(tmp_path):
    s = Store(str(tmp_path / "data" / "devices.db"))
    yield s
    s.close()


@pytest.fixture
def repo(store):
    return DeviceRepository(store)


@pytest.fixture
def service(repo):
    return DeviceService(repo)


@pytest.fixture
def make_device():
    def _make(
        guid: str = "a1b2c3d4-0000-0000-0000-000000000001",
        platform: str = "ANDROID",
        status: str = "ACTIVATED",
        patch: str = "",
        os_version: str = "",
        parent: str = "",
        oid: str = "1",
    ) -> Device:
        return Device(
            guid=guid,
            oid=oid,
            parent_device_guid=parent,
            activation_status=status,
            platform=platform,
            software=Software(security_patch_level=patch, os_version=os_version),
        )

    return _make


@pytest.fixture
def make_api():
    return SyntheticMraApi


@pytest.fixture
def make_client():
    def _make(session, max_retries: int = 3, **kwargs) -> MraClient:
        return MraClient(
            "https://mra.example.test",
            "app-key",
            timeout=5,
            max_retries=max_retries,
            retry_delay=0,
            session=session,
            sleep=lambda _: None,
            **kwargs,
        )

    return _make


@pytest.fixture
def synthetic_device():
    return api_device


@pytest.fixture
def transport_error():
    return requests.ConnectionError("connection reset")
