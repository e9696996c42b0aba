"""Unit tests for device persistence."""

import threading
from datetime import datetime, timezone

import pytest

from scanner.errors import NotFoundError, StoreError


class TestSaveAndGet:
    def test_save_then_get_returns_same_record(self, repo, make_device):
        device = make_device(patch="2024-01-01", parent="parent-guid", oid="42")
        before = datetime.now(timezone.utc)

        repo.save(device)
        stored = repo.get(device.guid)

        assert stored.model_dump(exclude={"last_updated"}) == device.model_dump(exclude={"last_updated"})
        assert stored.last_updated >= before

    def test_save_is_an_idempotent_replace(self, repo, make_device):
        repo.save(make_device(patch="2023-01-01"))
        first = repo.get("a1b2c3d4-0000-0000-0000-000000000001")
        repo.save(make_device(patch="2024-01-01"))
        second = repo.get("a1b2c3d4-0000-0000-0000-000000000001")

        assert second.software.security_patch_level == "2024-01-01"
        assert second.last_updated >= first.last_updated
        assert len(repo.list()) == 1

    def test_get_missing_raises(self, repo):
        with pytest.raises(NotFoundError):
            repo.get("nope")

    def test_corrupt_record_raises_store_error(self, repo, store):
        with store.update() as tx:
            tx.set("broken", "{not json")
        with pytest.raises(StoreError):
            repo.get("broken")


class TestUpdateAndDelete:
    def test_update_requires_existing(self, repo, make_device):
        with pytest.raises(NotFoundError):
            repo.update(make_device())

    def test_update_replaces_record(self, repo, make_device):
        repo.save(make_device(status="PENDING"))
        repo.update(make_device(status="ACTIVATED"))
        assert repo.get("a1b2c3d4-0000-0000-0000-000000000001").activation_status == "ACTIVATED"

    def test_delete(self, repo, make_device):
        repo.save(make_device())
        repo.delete("a1b2c3d4-0000-0000-0000-000000000001")
        assert repo.list() == []

    def test_delete_missing_raises(self, repo):
        with pytest.raises(NotFoundError):
            repo.delete("nope")


class TestScans:
    def test_list_is_ordered_by_guid(self, repo, make_device):
        for guid in ("c-guid", "a-guid", "b-guid"):
            repo.save(make_device(guid=guid))
        assert [d.guid for d in repo.list()] == ["a-guid", "b-guid", "c-guid"]

    def test_filters(self, repo, make_device):
        repo.save(make_device(guid="android-1", platform="ANDROID"))
        repo.save(make_device(guid="ios-1", platform="IOS", status="DEACTIVATED"))
        repo.save(make_device(guid="ios-2", platform="IOS"))

        assert [d.guid for d in repo.get_by_platform("IOS")] == ["ios-1", "ios-2"]
        assert [d.guid for d in repo.get_active_devices()] == ["android-1", "ios-2"]


class TestAdjustChildCount:
    def test_missing_parent_returns_none(self, repo):
        assert repo.adjust_child_count("nope", 1) is None

    def test_increments_and_persists(self, repo, make_device):
        repo.save(make_device(guid="parent"))
        repo.adjust_child_count("parent", 1)
        repo.adjust_child_count("parent", 1)
        assert repo.get("parent").child_count == 2

    def test_concurrent_increments_are_not_lost(self, repo, make_device):
        repo.save(make_device(guid="parent"))
        threads = [threading.Thread(target=repo.adjust_child_count, args=("parent", 1)) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert repo.get("parent").child_count == 20
