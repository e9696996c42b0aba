"""End-to-end sync tests against the scripted MRA fake."""

import math
import threading
from unittest.mock import Mock, patch

import pytest

from scanner.api_models import ApiDevice, DevicesResponse
from scanner.config import APIConfig, AppConfig, Config, DatabaseConfig
from scanner.errors import SyncCancelled, SyncError, ValidationError
from scanner.sync_job import run_sync_once, sync_devices


class TestSyncDevices:
    def test_rate_limited_page_is_retried(self, make_api, make_client, synthetic_device, service):
        api = make_api(
            [
                synthetic_device(1),
                synthetic_device(2, platform="IOS", os_version="16.2"),
                synthetic_device(3),
                synthetic_device(4, parent="device-0001-guid"),
            ]
        )
        api.failures["2"] = [429]
        client = make_client(api)

        result = sync_devices(client, service, batch_size=2, worker_count=2)

        assert result.total == 4
        assert result.processed == 4
        assert result.platforms == {"ANDROID": 3, "IOS": 1}
        assert client.retry_count == 1
        # probe, page 1, page 2 (429), page 2
        assert [c["params"] for c in api.device_calls()] == [
            {"limit": 1},
            {"limit": 2},
            {"limit": 2, "oid": "2"},
            {"limit": 2, "oid": "2"},
        ]
        assert service.get_statistics().total_devices == 4

    def test_cursor_strictly_increases(self, make_api, make_client, synthetic_device, service):
        api = make_api([synthetic_device(i) for i in range(1, 11)])
        client = make_client(api)

        sync_devices(client, service, batch_size=3, worker_count=2)

        cursors = [int(c["params"]["oid"]) for c in api.device_calls() if "oid" in c["params"]]
        assert cursors == [3, 6, 9]
        assert len(service.list_devices()) == 10

    def test_overstated_total_stops_on_empty_page(self, make_api, make_client, synthetic_device, service):
        api = make_api([synthetic_device(i) for i in range(1, 4)], declared_total=10)
        client = make_client(api)

        result = sync_devices(client, service, batch_size=2, worker_count=2)

        assert result.processed == 3
        assert result.pages == 3
        assert result.pages <= math.ceil(10 / 2) + 1

    def test_stalled_cursor_stops(self, synthetic_device, service):
        stuck = DevicesResponse(count=5, devices=[ApiDevice(**dict(synthetic_device(1), oid=""))])
        client = Mock()
        client.get_devices.return_value = stuck

        result = sync_devices(client, service, batch_size=2, worker_count=1)

        assert result.pages == 1
        assert result.processed == 1
        assert client.get_devices.call_count == 2

    def test_empty_inventory(self, make_api, make_client, service):
        api = make_api([])
        client = make_client(api)

        result = sync_devices(client, service, batch_size=2, worker_count=2)

        assert result.total == 0
        assert result.pages == 0
        assert len(api.device_calls()) == 1

    def test_progress_reported_per_page(self, make_api, make_client, synthetic_device, service):
        api = make_api([synthetic_device(i) for i in range(1, 6)])
        client = make_client(api)
        progress = []

        sync_devices(client, service, batch_size=2, worker_count=2, on_progress=lambda p, t: progress.append((p, t)))

        assert progress == [(2, 5), (4, 5), (5, 5)]

    def test_invalid_device_aborts_sync(self, make_api, make_client, synthetic_device, service):
        bad = synthetic_device(2, platform="WINDOWS")
        api = make_api([synthetic_device(1), bad, synthetic_device(3), synthetic_device(4)])
        client = make_client(api)

        with pytest.raises(SyncError) as exc_info:
            sync_devices(client, service, batch_size=2, worker_count=2)

        assert exc_info.value.guid == "device-0002-guid"
        # no page after the failing one is requested
        assert len(api.device_calls()) == 2
        assert [d.guid for d in service.list_devices()] == ["device-0001-guid"]

    def test_null_platform_fails_only_that_device(self, make_api, make_client, synthetic_device, service):
        api = make_api([synthetic_device(1), synthetic_device(2, platform=None)])
        client = make_client(api)

        with pytest.raises(SyncError) as exc_info:
            sync_devices(client, service, batch_size=2, worker_count=2)

        assert exc_info.value.guid == "device-0002-guid"
        assert isinstance(exc_info.value.__cause__, ValidationError)
        assert exc_info.value.__cause__.field == "platform"
        assert [d.guid for d in service.list_devices()] == ["device-0001-guid"]

    def test_cancelled_before_first_page(self, make_api, make_client, synthetic_device, service):
        api = make_api([synthetic_device(1)])
        client = make_client(api)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(SyncCancelled):
            sync_devices(client, service, batch_size=2, worker_count=1, cancel_event=cancel)

        assert service.list_devices() == []


class TestRunSyncOnce:
    def test_attaches_statistics(self, make_api, make_client, synthetic_device, store):
        api = make_api([synthetic_device(1), synthetic_device(2)])
        client = make_client(api)
        cfg = Config(
            api=APIConfig("https://mra.example.test", "app-key", 5, 0, 1),
            database=DatabaseConfig(":unused:", 1),
            app=AppConfig("testing", "info", 2, 10, 5, 0),
        )

        with patch("scanner.sync_job.MraClient.from_config", return_value=client):
            result = run_sync_once(cfg, store)

        assert result.processed == 2
        assert result.statistics.total_devices == 2
        assert result.statistics.android_devices == 2
