"""Tests for the filesystem artifact store."""

import pytest

from amptrack_services.storage import LocalArtifactStore


@pytest.fixture
def local_store(tmp_path):
    return LocalArtifactStore(tmp_path / "artifacts")


class TestLocalArtifactStore:

    def test_put_then_get(self, local_store):
        local_store.put("invoice/abc/r1.pdf", b"%PDF-1.4 one")
        assert local_store.get("invoice/abc/r1.pdf") == b"%PDF-1.4 one"
        assert local_store.exists("invoice/abc/r1.pdf")

    def test_overwrite_replaces_content(self, local_store):
        local_store.put("estimate/x/r1.pdf", b"old")
        local_store.put("estimate/x/r1.pdf", b"new")
        assert local_store.get("estimate/x/r1.pdf") == b"new"

    def test_no_temp_files_left_behind(self, local_store):
        local_store.put("estimate/x/r1.pdf", b"data")
        leftovers = [p.name for p in (local_store.root / "estimate" / "x").iterdir()]
        assert leftovers == ["r1.pdf"]

    def test_missing_key(self, local_store):
        assert local_store.get("invoice/none/r1.pdf") is None
        assert not local_store.exists("invoice/none/r1.pdf")

    def test_delete_is_idempotent(self, local_store):
        local_store.put("invoice/abc/r1.pdf", b"x")
        local_store.delete("invoice/abc/r1.pdf")
        local_store.delete("invoice/abc/r1.pdf")
        assert local_store.get("invoice/abc/r1.pdf") is None

    @pytest.mark.parametrize("key", ["../escape.pdf", "invoice/../../escape.pdf", "/etc/passwd"])
    def test_keys_cannot_escape_root(self, local_store, key):
        with pytest.raises(ValueError):
            local_store.put(key, b"x")
