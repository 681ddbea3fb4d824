"""Tests for LocalStorage and the JSON local storage adapter."""

import asyncio
import dataclasses
import logging

import pytest

from docmirror import (
    LoadError,
    LocalStorage,
    SaveError,
    SerializationError,
    StorageAdapter,
    StoreRegistry,
    local_storage_adapter,
)


class TestLocalStorage:
    """Key-value text storage, one file per key."""

    def test_set_get_remove(self, tmp_path):
        storage = LocalStorage(tmp_path / "kv")
        assert storage.get_item("a") is None
        storage.set_item("a", "hello")
        assert storage.get_item("a") == "hello"
        assert "a" in storage
        storage.remove_item("a")
        assert storage.get_item("a") is None
        storage.remove_item("a")  # missing key is fine

    def test_keys_are_escaped_and_listed(self, tmp_path):
        storage = LocalStorage(tmp_path)
        storage.set_item("users/42", "x")
        storage.set_item("settings", "y")
        assert list(storage.keys()) == ["settings", "users/42"]
        assert storage.get_item("users/42") == "x"

    def test_keys_of_missing_directory(self, tmp_path):
        assert list(LocalStorage(tmp_path / "nope").keys()) == []

    def test_overwrite_leaves_no_temp_file(self, tmp_path):
        storage = LocalStorage(tmp_path)
        storage.set_item("a", "1")
        storage.set_item("a", "2")
        assert storage.get_item("a") == "2"
        assert [p.name for p in tmp_path.iterdir()] == ["a.json"]


class TestLocalStorageAdapter:
    """JSON encoding of documents over LocalStorage."""

    def test_adapter_is_immutable(self, tmp_path):
        adapter = local_storage_adapter(tmp_path)
        assert isinstance(adapter, StorageAdapter)
        with pytest.raises(dataclasses.FrozenInstanceError):
            adapter.load = None

    def test_missing_document_is_absent(self, tmp_path):
        assert local_storage_adapter(tmp_path).load("settings") is None

    def test_save_then_load(self, tmp_path):
        adapter = local_storage_adapter(LocalStorage(tmp_path))
        adapter.save("doc", {"a": [1, {"b": "ü"}]})
        assert adapter.load("doc") == {"a": [1, {"b": "ü"}]}

    def test_invalid_json_loads_empty(self, tmp_path, caplog):
        storage = LocalStorage(tmp_path)
        storage.set_item("doc", "{not json")
        with caplog.at_level(logging.WARNING, logger="docmirror.adapter"):
            assert local_storage_adapter(storage).load("doc") == {}
        assert "not valid JSON" in caplog.text

    def test_non_object_json_loads_empty(self, tmp_path):
        storage = LocalStorage(tmp_path)
        storage.set_item("doc", "[1, 2]")
        assert local_storage_adapter(storage).load("doc") == {}

    def test_unserializable_document_raises(self, tmp_path):
        adapter = local_storage_adapter(tmp_path)
        with pytest.raises(SerializationError) as excinfo:
            adapter.save("doc", {"when": object()})
        assert isinstance(excinfo.value, SaveError)
        assert isinstance(excinfo.value, LoadError)
        assert excinfo.value.name == "doc"
        assert LocalStorage(tmp_path).get_item("doc") is None

    def test_default_directory_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DOCMIRROR_STORAGE_DIR", str(tmp_path / "env"))
        local_storage_adapter().save("doc", {"x": 1})
        assert (tmp_path / "env" / "doc.json").exists()


class TestRoundTrip:
    """Load, mutate through a handle, save, load again."""

    @pytest.mark.asyncio
    async def test_load_mutate_save_load(self, tmp_path):
        adapter = local_storage_adapter(tmp_path)
        adapter.save("settings", {"theme": "light", "recent": ["a"]})

        registry = StoreRegistry(20)
        settings = await registry.open("settings", adapter)
        settings["theme"] = "dark"
        settings["recent"].append("b")
        del settings["recent"][0]
        settings["window"] = {"w": 800, "h": 600}
        await asyncio.sleep(0.08)

        assert adapter.load("settings") == {
            "theme": "dark",
            "recent": ["b"],
            "window": {"w": 800, "h": 600},
        }

        reopened = await registry.open("settings", adapter)
        assert reopened == settings
        assert reopened is not settings
