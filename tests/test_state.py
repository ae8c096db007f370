"""Tests for state module (LocalStateBackend, load_state, StateStore, get_backend)."""

import json
import os
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import AzureError, ResourceNotFoundError

from apigw_ops.exceptions import StateCorruption, StateError, StateLocked
from apigw_ops.state import (
    DEFAULT_STATE_FILE,
    STATE_VERSION,
    AzureBlobStateBackend,
    LocalStateBackend,
    StateStore,
    checksum,
    get_backend,
    load_state,
)


class TestLocalStateBackend:
    # Tests that init creates state file with correct structure.
    def test_init_creates_file(self, tmp_path):
        path = str(tmp_path / "state.json")
        backend = LocalStateBackend(path)
        state = backend.init("demo")
        assert os.path.isfile(path)
        assert state["version"] == STATE_VERSION
        assert state["stack"] == "demo"
        assert state["resources"] == {}
        assert state["run"] is None
        assert state["checksum"] == checksum({})

    # Tests that read returns None when state file does not exist.
    def test_read_missing_file_returns_none(self, tmp_path):
        backend = LocalStateBackend(str(tmp_path / "nope.json"))
        assert backend.read() is None

    # Tests that init creates nested parent directories if needed.
    def test_init_creates_parent_dirs(self, tmp_path):
        path = str(tmp_path / "deep" / "nested" / "state.json")
        LocalStateBackend(path).init("s")
        assert os.path.isfile(path)

    # Tests that writes leave no temp file behind.
    def test_write_is_atomic_rename(self, tmp_path):
        path = str(tmp_path / "state.json")
        backend = LocalStateBackend(path)
        backend.init("s")
        assert not os.path.exists(path + ".tmp")

    # Tests that unparseable state raises StateCorruption.
    def test_read_invalid_json(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{truncated")
        with pytest.raises(StateCorruption, match="not valid JSON"):
            LocalStateBackend(str(path)).read()

    # Tests that lock raises StateLocked when already locked.
    def test_double_lock_raises(self, tmp_path):
        backend = LocalStateBackend(str(tmp_path / "state.json"))
        backend.init("s")
        backend.lock()
        with pytest.raises(StateLocked, match="locked"):
            backend.lock()
        backend.unlock()

    # Tests that unlock is idempotent even without existing lock.
    def test_unlock_idempotent(self, tmp_path):
        LocalStateBackend(str(tmp_path / "state.json")).unlock()

    # Tests that force_unlock removes lock so it can be taken again.
    def test_force_unlock(self, tmp_path):
        path = str(tmp_path / "state.json")
        backend = LocalStateBackend(path)
        backend.init("s")
        backend.lock()
        backend.force_unlock()
        assert not os.path.isfile(path + ".lock")
        backend.lock()
        backend.unlock()


class TestLoadState:
    # Tests that missing state loads as None.
    def test_missing(self, tmp_path):
        assert load_state(LocalStateBackend(str(tmp_path / "none.json"))) is None

    # Tests that a hand-edited resources section fails the checksum.
    def test_checksum_mismatch(self, tmp_path):
        path = tmp_path / "state.json"
        backend = LocalStateBackend(str(path))
        backend.init("s")
        data = json.loads(path.read_text())
        data["resources"]["A"] = {"type": "Role"}
        path.write_text(json.dumps(data))
        with pytest.raises(StateCorruption, match="--ignore-checksum"):
            load_state(backend)
        assert load_state(backend, ignore_checksum=True)["resources"]["A"] == {"type": "Role"}

    # Tests that a state file from a newer version is refused.
    def test_newer_version(self, tmp_path):
        path = tmp_path / "state.json"
        backend = LocalStateBackend(str(path))
        state = backend.init("s")
        state["version"] = STATE_VERSION + 1
        backend.write(state)
        with pytest.raises(StateError, match="newer"):
            load_state(backend)

    # Tests that a non-integer version is reported as corruption, not a crash.
    def test_non_integer_version(self, tmp_path):
        path = tmp_path / "state.json"
        backend = LocalStateBackend(str(path))
        state = backend.init("s")
        state["version"] = "2"
        backend.write(state)
        with pytest.raises(StateCorruption, match="not an integer"):
            load_state(backend)


class TestStateStore:
    # Tests that commits are persisted with a valid checksum.
    def test_commit_persists(self, store, state_backend):
        store.commit("A", {"type": "Role", "outputs": {"arn": "x"}})
        state = load_state(state_backend)
        assert state["resources"]["A"]["outputs"] == {"arn": "x"}
        assert store.outputs() == {"A": {"arn": "x"}}

    # Tests that entries handed out are copies.
    def test_entry_is_copy(self, store):
        store.commit("A", {"type": "Role", "outputs": {}})
        store.entry("A")["type"] = "changed"
        assert store.entry("A")["type"] == "Role"
        assert store.entry("missing") is None

    # Tests that remove drops the entry from persisted state.
    def test_remove(self, store, state_backend):
        store.commit("A", {"type": "Role"})
        store.remove("A")
        assert load_state(state_backend)["resources"] == {}

    # Tests that run records and stack outputs are persisted.
    def test_run_and_outputs(self, store, state_backend):
        store.set_run({"status": "completed"})
        store.set_stack_outputs({"Url": "https://x"}, "2026-01-01T00:00:00+00:00")
        state = load_state(state_backend)
        assert state["run"] == {"status": "completed"}
        assert state["outputs"] == {"Url": "https://x"}
        assert state["last_applied"] == "2026-01-01T00:00:00+00:00"

    # Tests that concurrent commits from worker threads are all kept.
    def test_concurrent_commits(self, store, state_backend):
        threads = [
            threading.Thread(target=store.commit, args=(f"R{i}", {"type": "Role"}))
            for i in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(load_state(state_backend)["resources"]) == 20


class TestGetBackend:
    # Tests that the local backend defaults to the standard state file name.
    def test_local_default(self, monkeypatch):
        monkeypatch.delenv("APIGW_STATE_BACKEND", raising=False)
        monkeypatch.delenv("APIGW_STATE_FILE", raising=False)
        backend = get_backend(SimpleNamespace(backend=None, state_file=None))
        assert backend.state_file == DEFAULT_STATE_FILE

    # Tests that the state file comes from the environment when no flag is given.
    def test_local_from_env(self, monkeypatch):
        monkeypatch.setenv("APIGW_STATE_FILE", "/tmp/x.json")
        backend = get_backend(SimpleNamespace(backend="local", state_file=None))
        assert backend.state_file == "/tmp/x.json"

    # Tests that get_backend error message lists all missing Azure backend parameters.
    def test_azure_backend_lists_missing_params(self, monkeypatch):
        monkeypatch.delenv("APIGW_STATE_STORAGE_ACCOUNT", raising=False)
        monkeypatch.delenv("APIGW_STATE_CONTAINER", raising=False)
        monkeypatch.delenv("APIGW_STATE_BLOB", raising=False)
        args = SimpleNamespace(
            backend="azure",
            backend_storage_account=None,
            backend_container=None,
            backend_blob=None,
            client_id=None,
            client_secret=None,
            tenant_id=None,
        )
        with pytest.raises(ValueError) as exc:
            get_backend(args)
        msg = str(exc.value)
        assert "APIGW_STATE_STORAGE_ACCOUNT" in msg
        assert "APIGW_STATE_CONTAINER" in msg
        assert "APIGW_STATE_BLOB" in msg


class TestAzureBlobStateBackend:
    """Blob backend with the storage SDK mocked out."""

    @pytest.fixture
    def blob_backend(self):
        with patch("apigw_ops.state.DefaultAzureCredential"), \
             patch("apigw_ops.state.BlobServiceClient") as mock_service:
            backend = AzureBlobStateBackend("acct", "tfstate", "apigw.json")
        backend._mock_blob = mock_service.return_value.get_container_client.return_value.get_blob_client.return_value
        return backend

    # Tests that a missing blob reads as no state.
    def test_read_missing_blob(self, blob_backend):
        blob_backend._mock_blob.download_blob.side_effect = ResourceNotFoundError("gone")
        assert blob_backend.read() is None

    # Tests that state is parsed from the blob contents.
    def test_read_blob(self, blob_backend):
        blob_backend._mock_blob.download_blob.return_value.readall.return_value = (
            json.dumps({"resources": {}, "checksum": checksum({})}).encode()
        )
        assert blob_backend.read()["resources"] == {}

    # Tests that a lease that cannot be acquired raises StateLocked.
    def test_lock_conflict(self, blob_backend):
        with patch("apigw_ops.state.BlobLeaseClient") as mock_lease:
            mock_lease.return_value.acquire.side_effect = AzureError("lease already present")
            with pytest.raises(StateLocked, match="blob lease"):
                blob_backend.lock()

    # Tests that writes under a lease pass the lease to the upload.
    def test_write_with_lease(self, blob_backend):
        lease = MagicMock()
        blob_backend._lease = lease
        blob_backend.write({"resources": {}})
        _, kwargs = blob_backend._mock_blob.upload_blob.call_args
        assert kwargs["lease"] is lease
        assert kwargs["overwrite"] is True
