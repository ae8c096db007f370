"""Deployment state: local file and Azure Blob Storage backends, plus the single-writer store."""

from __future__ import annotations

import copy
import json
import os
import threading
from typing import Any

import structlog
from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential, ClientSecretCredential
from azure.storage.blob import BlobServiceClient, BlobLeaseClient

from apigw_ops.exceptions import StateCorruption, StateError, StateLocked
from apigw_ops.stack_reader import compute_hash

logger = structlog.get_logger()

STATE_VERSION = 1
LEASE_DURATION = 60  # seconds
DEFAULT_STATE_FILE = ".apigw-state.json"


def empty_state(stack_name: str) -> dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "stack": stack_name,
        "last_applied": None,
        "checksum": checksum({}),
        "run": None,
        "outputs": {},
        "resources": {},
    }


def checksum(resources: dict[str, Any]) -> str:
    return compute_hash(resources)


def _parse(data: str | bytes, source: str) -> dict[str, Any]:
    try:
        state = json.loads(data)
    except ValueError as e:
        raise StateCorruption(f"State {source} is not valid JSON: {e}")
    if not isinstance(state, dict) or not isinstance(state.get("resources"), dict):
        raise StateCorruption(f"State {source} has no 'resources' mapping")
    result: dict[str, Any] = state
    return result


def load_state(backend: Any, ignore_checksum: bool = False) -> dict[str, Any] | None:
    """Read state and verify its checksum.

    Returns None when no state exists yet.

    Raises:
        StateCorruption: unparseable state, or checksum mismatch without ignore_checksum
    """
    state = backend.read()
    if state is None:
        return None
    version = state.get("version", STATE_VERSION)
    if not isinstance(version, int) or isinstance(version, bool):
        raise StateCorruption(f"State version {version!r} is not an integer")
    if version > STATE_VERSION:
        raise StateError(
            f"State version {state['version']} is newer than supported version {STATE_VERSION}"
        )
    expected = state.get("checksum")
    actual = checksum(state["resources"])
    if expected != actual:
        if not ignore_checksum:
            raise StateCorruption(
                f"State checksum mismatch (expected {expected}, found {actual}). "
                "The state was edited or partially written. "
                "Re-run with --ignore-checksum to accept it as-is."
            )
        logger.warning("state_checksum_ignored", expected=expected, actual=actual)
    return state


class LocalStateBackend:
    """State stored as a local JSON file with .lock file locking."""

    def __init__(self, state_file: str) -> None:
        self.state_file = state_file
        self._lock_file = state_file + ".lock"

    def init(self, stack_name: str) -> dict[str, Any]:
        state = empty_state(stack_name)
        self._write(state)
        return state

    def read(self) -> dict[str, Any] | None:
        if not os.path.exists(self.state_file):
            return None
        with open(self.state_file, "r") as f:
            return _parse(f.read(), self.state_file)

    def write(self, state: dict[str, Any]) -> None:
        self._write(state)

    def _write(self, state: dict[str, Any]) -> None:
        os.makedirs(os.path.dirname(self.state_file) or ".", exist_ok=True)
        tmp = self.state_file + ".tmp"
        with open(tmp, "w") as f:
            json.dump(state, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.state_file)

    def lock(self) -> None:
        try:
            fd = os.open(self._lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            os.write(fd, str(os.getpid()).encode())
            os.close(fd)
        except FileExistsError:
            raise StateLocked(
                f"State file is locked ({self._lock_file}). "
                "Another process may be running. Use force-unlock to remove."
            )

    def unlock(self) -> None:
        try:
            os.remove(self._lock_file)
        except FileNotFoundError:
            pass

    def force_unlock(self) -> None:
        self.unlock()


class AzureBlobStateBackend:
    """State stored in Azure Blob Storage with blob lease locking."""

    def __init__(self, storage_account: str, container: str, blob_path: str,
                 client_id: str | None = None, client_secret: str | None = None,
                 tenant_id: str | None = None) -> None:
        credential: TokenCredential
        if client_id and client_secret and tenant_id:
            credential = ClientSecretCredential(tenant_id, client_id, client_secret)
        else:
            credential = DefaultAzureCredential()
        account_url = f"https://{storage_account}.blob.core.windows.net"
        self._blob_service = BlobServiceClient(account_url, credential=credential)
        self._blob_path = blob_path
        self._container_client = self._blob_service.get_container_client(container)
        self._blob_client = self._container_client.get_blob_client(blob_path)
        self._lease: BlobLeaseClient | None = None
        self._renew_thread: threading.Thread | None = None
        self._stop_renew = threading.Event()

    def init(self, stack_name: str) -> dict[str, Any]:
        try:
            self._container_client.create_container()
        except ResourceExistsError:
            pass
        state = empty_state(stack_name)
        self.write(state)
        return state

    def read(self) -> dict[str, Any] | None:
        try:
            data = self._blob_client.download_blob().readall()
        except ResourceNotFoundError:
            return None
        return _parse(data, f"blob {self._blob_path}")

    def write(self, state: dict[str, Any]) -> None:
        # Block blob uploads replace the blob atomically
        kwargs: dict[str, Any] = {}
        if self._lease:
            kwargs["lease"] = self._lease
        self._blob_client.upload_blob(
            json.dumps(state, indent=2), overwrite=True, **kwargs,
        )

    def lock(self) -> None:
        try:
            lease_client = BlobLeaseClient(self._blob_client)
            lease_client.acquire(lease_duration=LEASE_DURATION)
        except AzureError as e:
            raise StateLocked(
                f"Failed to acquire blob lease: {e}. "
                "Another process may hold the lock. Use force-unlock."
            )
        self._lease = lease_client
        self._stop_renew.clear()
        self._renew_thread = threading.Thread(
            target=self._renew_loop, daemon=True,
        )
        self._renew_thread.start()

    def _renew_loop(self) -> None:
        while not self._stop_renew.wait(timeout=LEASE_DURATION / 2):
            try:
                if self._lease:
                    self._lease.renew()
            except AzureError as e:
                logger.error("state_lease_renew_failed", error=str(e))
                break

    def unlock(self) -> None:
        self._stop_renew.set()
        if self._lease:
            try:
                self._lease.release()
            except AzureError as e:
                logger.warning("state_lease_release_failed", error=str(e))
            self._lease = None

    def force_unlock(self) -> None:
        try:
            lease_client = BlobLeaseClient(self._blob_client)
            lease_client.break_lease(lease_break_period=0)
        except ResourceNotFoundError:
            pass
        self._lease = None


class StateStore:
    """The only writer of deployment state during a run.

    Backend calls run concurrently on worker threads; every state mutation
    goes through this object, which holds a lock around the in-memory state
    and the backend write, so completions cannot interleave.
    """

    def __init__(self, backend: Any, state: dict[str, Any]) -> None:
        self._backend = backend
        self._state = state
        self._state.setdefault("resources", {})
        self._state.setdefault("outputs", {})
        self._lock = threading.Lock()

    def entry(self, identity: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._state["resources"].get(identity)
            return copy.deepcopy(entry)

    def resources(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._state["resources"])

    def outputs(self) -> dict[str, dict[str, Any]]:
        """identity → committed backend outputs."""
        with self._lock:
            return {
                identity: copy.deepcopy(entry.get("outputs", {}))
                for identity, entry in self._state["resources"].items()
            }

    def run(self) -> dict[str, Any] | None:
        with self._lock:
            return copy.deepcopy(self._state.get("run"))

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._state)

    def commit(self, identity: str, entry: dict[str, Any]) -> None:
        with self._lock:
            self._state["resources"][identity] = copy.deepcopy(entry)
            self._flush()

    def remove(self, identity: str) -> None:
        with self._lock:
            self._state["resources"].pop(identity, None)
            self._flush()

    def set_run(self, run: dict[str, Any] | None) -> None:
        with self._lock:
            self._state["run"] = copy.deepcopy(run)
            self._flush()

    def set_stack_outputs(self, outputs: dict[str, Any], applied_at: str) -> None:
        with self._lock:
            self._state["outputs"] = copy.deepcopy(outputs)
            self._state["last_applied"] = applied_at
            self._flush()

    def _flush(self) -> None:
        self._state["checksum"] = checksum(self._state["resources"])
        self._backend.write(self._state)
        logger.debug("state_written", resources=len(self._state["resources"]))


def get_backend(args: Any) -> LocalStateBackend | AzureBlobStateBackend:
    """Create the appropriate state backend from CLI args or env vars."""
    backend_type = getattr(args, "backend", None) or os.environ.get("APIGW_STATE_BACKEND", "local")

    if backend_type == "azure":
        storage_account = getattr(args, "backend_storage_account", None) or os.environ.get("APIGW_STATE_STORAGE_ACCOUNT")
        container = getattr(args, "backend_container", None) or os.environ.get("APIGW_STATE_CONTAINER")
        blob_path = getattr(args, "backend_blob", None) or os.environ.get("APIGW_STATE_BLOB")
        missing = []
        if not storage_account:
            missing.append("--backend-storage-account or APIGW_STATE_STORAGE_ACCOUNT")
        if not container:
            missing.append("--backend-container or APIGW_STATE_CONTAINER")
        if not blob_path:
            missing.append("--backend-blob or APIGW_STATE_BLOB")
        if missing:
            raise ValueError(
                "Azure state backend requires: " + ", ".join(missing)
            )
        assert storage_account is not None
        assert container is not None
        assert blob_path is not None
        return AzureBlobStateBackend(
            storage_account=storage_account,
            container=container,
            blob_path=blob_path,
            client_id=getattr(args, "client_id", None),
            client_secret=getattr(args, "client_secret", None),
            tenant_id=getattr(args, "tenant_id", None),
        )
    else:
        state_file = (getattr(args, "state_file", None)
                      or os.environ.get("APIGW_STATE_FILE")
                      or DEFAULT_STATE_FILE)
        return LocalStateBackend(state_file)
