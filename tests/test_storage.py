"""Key-value storage backends and quota enforcement."""

import errno
from pathlib import Path

import pytest

from cmmc_tracker.errors import StorageQuotaExceededError, StorageWriteError
from cmmc_tracker.storage import FileStorage, MemoryStorage


def test_memory_storage_roundtrip():
    storage = MemoryStorage()
    storage.set_item("cmc_controls", "[]")
    assert storage.get_item("cmc_controls") == "[]"
    assert storage.keys() == ["cmc_controls"]
    storage.remove_item("cmc_controls")
    assert storage.get_item("cmc_controls") is None


def test_usage_counts_keys_and_values():
    storage = MemoryStorage({"ab": "1234"})
    assert storage.usage() == 6


def test_quota_rejects_whole_batch():
    storage = MemoryStorage(quota_bytes=20)
    with pytest.raises(StorageQuotaExceededError) as excinfo:
        storage.set_items({"a": "1", "b": "x" * 30})
    assert storage.keys() == []
    assert excinfo.value.available == 20
    assert excinfo.value.required > 20


def test_quota_accounts_for_replaced_value():
    storage = MemoryStorage({"k": "x" * 15}, quota_bytes=20)
    # Replacing a value frees the old one first
    storage.set_item("k", "y" * 18)
    assert storage.get_item("k") == "y" * 18


def test_file_storage_creates_gitignore(tmp_path):
    directory = tmp_path / "data"
    FileStorage(str(directory))
    assert (directory / ".gitignore").read_text() == "*\n!.gitignore\n"


def test_file_storage_roundtrip(tmp_path):
    storage = FileStorage(str(tmp_path))
    storage.set_items({"cmc_policies": '[{"id": "p1"}]', "cmc_settings": "{}"})
    assert (tmp_path / "cmc_policies.json").exists()
    assert storage.get_item("cmc_policies") == '[{"id": "p1"}]'
    assert storage.keys() == ["cmc_policies", "cmc_settings"]
    storage.clear()
    assert storage.keys() == []
    assert storage.get_item("missing") is None


def test_file_storage_batch_fails_as_a_whole(tmp_path):
    storage = FileStorage(str(tmp_path))
    storage.set_items({"cmc_controls": "[1]"})
    (tmp_path / "cmc_policies.json").mkdir()

    with pytest.raises(StorageWriteError):
        storage.set_items({"cmc_controls": "[2]", "cmc_policies": "[]"})

    assert storage.get_item("cmc_controls") == "[1]"
    assert not list(tmp_path.glob("*.tmp"))


def test_file_storage_rolls_back_replaced_files(tmp_path, monkeypatch):
    storage = FileStorage(str(tmp_path))
    storage.set_items({"cmc_controls": "[1]", "cmc_policies": "[2]"})

    original_replace = Path.replace

    def failing_replace(self, target):
        if self.name.endswith(".tmp") and Path(target).name == "cmc_policies.json":
            raise OSError(errno.EIO, "I/O error")
        return original_replace(self, target)

    monkeypatch.setattr(Path, "replace", failing_replace)
    with pytest.raises(StorageWriteError):
        storage.set_items({"cmc_controls": "[10]", "cmc_policies": "[20]", "cmc_settings": "{}"})
    monkeypatch.undo()

    assert storage.get_item("cmc_controls") == "[1]"
    assert storage.get_item("cmc_policies") == "[2]"
    assert storage.keys() == ["cmc_controls", "cmc_policies"]
    assert sorted(p.name for p in tmp_path.iterdir()) == [".gitignore", "cmc_controls.json", "cmc_policies.json"]


def test_file_storage_maps_full_disk_to_quota_error(tmp_path, monkeypatch):
    storage = FileStorage(str(tmp_path))

    def no_space(self, *args, **kwargs):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(Path, "write_text", no_space)
    with pytest.raises(StorageQuotaExceededError):
        storage.set_items({"cmc_controls": "[]"})
