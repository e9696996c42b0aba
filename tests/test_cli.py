"""Tests for the command-line entry point."""

import threading
from unittest.mock import patch

import pytest

from scanner import cli
from scanner.database import Store
from scanner.device_repository import DeviceRepository


@pytest.fixture
def db_path(tmp_path, clean_env):
    path = str(tmp_path / "data" / "devices.db")
    clean_env.setenv("DB_PATH", path)
    return path


class TestParseArgs:
    def test_defaults(self):
        args = cli.parse_args([])
        assert not args.local
        assert args.interval is None
        assert not args.verbose

    def test_flags(self):
        args = cli.parse_args(["--local", "--interval", "15", "-v"])
        assert args.local
        assert args.interval == 15
        assert args.verbose


class TestMain:
    def test_local_mode_prints_analysis(self, db_path, make_device, capsys):
        store = Store(db_path)
        DeviceRepository(store).save(make_device(platform="IOS", os_version="16.0"))
        store.close()

        code = cli.main(["--local"], cancel_event=threading.Event())

        assert code == 0
        out = capsys.readouterr().out
        assert '"security_stats"' in out
        assert "a1b2c3d4 (IOS)" in out

    def test_missing_key_fails(self, db_path, capsys):
        code = cli.main([], cancel_event=threading.Event())

        assert code == 1
        assert "APPLICATION_KEY" in capsys.readouterr().out

    def test_sync_mode_stores_devices(self, db_path, monkeypatch, make_api, make_client, synthetic_device):
        monkeypatch.setenv("APPLICATION_KEY", "app-key")
        monkeypatch.setenv("BATCH_SIZE", "2")
        api = make_api([synthetic_device(i) for i in range(1, 4)])

        with patch("scanner.cli.MraClient.from_config", return_value=make_client(api)):
            code = cli.main([], cancel_event=threading.Event())

        assert code == 0
        store = Store(db_path)
        try:
            assert len(DeviceRepository(store).list()) == 3
        finally:
            store.close()

    def test_api_failure_returns_error(self, db_path, monkeypatch, make_api, make_client, capsys):
        monkeypatch.setenv("APPLICATION_KEY", "app-key")
        api = make_api([])
        api.token_status = 401

        with patch("scanner.cli.MraClient.from_config", return_value=make_client(api)):
            code = cli.main([], cancel_event=threading.Event())

        assert code == 1
        assert "token request failed" in capsys.readouterr().out
