"""Tests for the key/value persistence substrate."""

import json

import pytest

from community_verifier.core.exceptions import StorageError
from community_verifier.verification.storage import (
    JsonFileStore,
    MemoryStore,
    get_store,
    reset_store,
)


class TestMemoryStore:
    """Tests for MemoryStore."""

    def test_get_missing_returns_none(self):
        assert MemoryStore().get("missing") is None

    def test_set_and_get(self):
        store = MemoryStore()
        store.set("k", ["alice.bsky.social"])
        assert store.get("k") == ["alice.bsky.social"]

    def test_values_are_copies(self):
        """Mutating a returned value does not change the stored one."""
        store = MemoryStore()
        store.set("k", ["alice"])
        value = store.get("k")
        value.append("bob")
        assert store.get("k") == ["alice"]

    def test_delete(self):
        store = MemoryStore()
        store.set("k", 1)
        store.delete("k")
        store.delete("k")
        assert store.get("k") is None
        assert len(store) == 0


class TestJsonFileStore:
    """Tests for JsonFileStore."""

    def test_missing_file_reads_empty(self, tmp_path):
        store = JsonFileStore(str(tmp_path / "state.json"))
        assert store.get("anything") is None

    def test_set_persists_to_disk(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        store = JsonFileStore(str(path))
        store.set("bsky_trusted_users", ["alice", "bob"])

        with open(path, "r", encoding="utf-8") as f:
            assert json.load(f) == {"bsky_trusted_users": ["alice", "bob"]}

        # A second store on the same file sees the value
        assert JsonFileStore(str(path)).get("bsky_trusted_users") == ["alice", "bob"]

    def test_keys_are_independent(self, tmp_path):
        store = JsonFileStore(str(tmp_path / "state.json"))
        store.set("a", 1)
        store.set("b", {"x": 2})
        store.delete("a")
        assert store.get("a") is None
        assert store.get("b") == {"x": 2}

    def test_no_temp_file_left_behind(self, tmp_path):
        store = JsonFileStore(str(tmp_path / "state.json"))
        store.set("a", 1)
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_invalid_json_raises_storage_error(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageError):
            JsonFileStore(str(path)).get("a")

    def test_non_object_raises_storage_error(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(StorageError):
            JsonFileStore(str(path)).get("a")


class TestGetStore:
    """Tests for the store singleton."""

    def test_defaults_to_memory_store(self):
        assert isinstance(get_store(), MemoryStore)

    def test_returns_same_instance(self):
        assert get_store() is get_store()

    def test_uses_file_store_when_path_configured(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            "community_verifier.core.config.STORAGE_PATH", str(tmp_path / "state.json")
        )
        reset_store()
        store = get_store()
        assert isinstance(store, JsonFileStore)
        assert store.path == tmp_path / "state.json"
