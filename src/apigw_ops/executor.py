"""Execute provisioning batches against a backend, committing state after each success."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any

import structlog

from apigw_ops.exceptions import (
    BackendPermanentError,
    BackendTransientError,
    ProvisioningTimeout,
    StateError,
)
from apigw_ops.graph import downstream, state_graph
from apigw_ops.reconciler import CREATE, DELETE, NOOP, UPDATE, reconcile
from apigw_ops.registry import Registry
from apigw_ops.resources import RESOURCE_TYPES
from apigw_ops.stack_reader import resolve_refs
from apigw_ops.state import StateStore
from apigw_ops.synthesizer import synthesize, teardown_order

logger = structlog.get_logger()

# Console symbols
CHECK = "\u2713"
CROSS = "\u2717"
SYMBOLS = {CREATE: "+", UPDATE: "~", DELETE: "-", NOOP: "."}

# Resource states
PENDING = "pending"
IN_PROGRESS = "in_progress"
DONE = "done"
FAILED = "failed"
SKIPPED = "skipped"

# Run states
NOT_STARTED = "not_started"
RUNNING = "running"
COMPLETED = "completed"
PARTIALLY_FAILED = "partially_failed"
ROLLED_BACK = "rolled_back"

DEFAULT_PARALLELISM = 4
DEFAULT_TIMEOUT = 900  # seconds; certificate DNS validation can be slow
DEFAULT_POLL_INTERVAL = 10  # seconds

# State key suffix for a replaced resource whose delete has not succeeded yet
RETIRED_SUFFIX = "~replaced"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _format_error_message(exc: Exception, context: str = "Error") -> str:
    """Format an exception message with backend error details.

    Args:
        exc: BackendError exception or other exception
        context: Context description (e.g., "Transient error", "Permanent error")

    Returns:
        Formatted error message
    """
    msg = f"{context}: {exc.message if hasattr(exc, 'message') else str(exc)}"

    if hasattr(exc, "error_code") and exc.error_code:
        msg += f" [{exc.error_code}]"

    if hasattr(exc, "request_id") and exc.request_id:
        msg += f" (req-id: {exc.request_id})"

    return msg


def _describe_error(exc: Exception) -> str:
    if isinstance(exc, ProvisioningTimeout):
        return _format_error_message(exc, "Timed out")
    if isinstance(exc, BackendTransientError):
        return _format_error_message(exc, "Transient error (exhausted retries)")
    if isinstance(exc, BackendPermanentError):
        return _format_error_message(exc, "Permanent error")
    return str(exc)


def _result(identity: str, verb: str, success: bool, outputs: dict[str, Any] | None = None,
            error: str | None = None, skipped: bool = False) -> dict[str, Any]:
    """One resource operation outcome."""
    return {
        "id": identity,
        "verb": verb,
        "outputs": outputs or {},
        "success": success,
        "skipped": skipped,
        "error": error,
    }


class Executor:
    """Walks provisioning batches and tracks per-resource and run state.

    Resources within a batch run concurrently on a thread pool; batches run
    strictly in order. A failed resource blocks only its transitive
    dependents, independent resources keep going. Every state write goes
    through the StateStore.
    """

    def __init__(self, registry: Registry, graph: dict[str, list[str]], backend: Any,
                 store: StateStore, parallelism: int = DEFAULT_PARALLELISM,
                 timeout: float = DEFAULT_TIMEOUT,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 refresh: bool = False) -> None:
        self.registry = registry
        self.graph = graph
        self.backend = backend
        self.store = store
        self.parallelism = max(1, parallelism)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.refresh = refresh
        self.status = NOT_STARTED
        self.resource_states: dict[str, str] = {}
        self.results: list[dict[str, Any]] = []
        self._cancel = threading.Event()
        self._print_lock = threading.Lock()
        self._progress = 0
        self._total = 0

    def cancel(self) -> None:
        """Stop dispatching new resources; in-flight operations are allowed to finish."""
        if not self._cancel.is_set():
            logger.warning("apply_cancel_requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------
    # apply / resume

    def apply(self) -> dict[str, Any]:
        """Provision every declared resource."""
        return self.execute(synthesize(self.graph))

    def resume(self) -> dict[str, Any]:
        """Continue a partially failed run with the resources that are not done yet."""
        run = self.store.run()
        if not run or run.get("operation") != "apply" or run.get("status") != PARTIALLY_FAILED:
            raise StateError("No partially failed apply to resume.")
        committed = self.store.resources()
        remaining = {i for i in run.get("pending", []) if i in self.registry}
        remaining |= {i for i in self.registry if i not in committed}
        return self.execute(synthesize(self.graph, only=remaining), previous=run)

    def execute(self, batches: list[list[str]],
                previous: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run the given batches. Returns a run summary dict."""
        ids = [identity for batch in batches for identity in batch]
        self.resource_states = {identity: PENDING for identity in ids}
        self.results = []
        self._progress = 0
        self._total = len(ids)
        self.status = RUNNING
        run = {
            "operation": "apply",
            "status": RUNNING,
            "started_at": _now(),
            "finished_at": None,
            "done": list(previous.get("done", [])) if previous else [],
            "created": list(previous.get("created", [])) if previous else [],
            "failed": [],
            "skipped": [],
            "pending": ids,
            "cancelled": False,
        }
        self.store.set_run(run)
        logger.info("apply_started", batches=len(batches), resources=len(ids))
        print(f"\nApplying {len(ids)} resources in {len(batches)} batches...\n")

        with ThreadPoolExecutor(max_workers=self.parallelism) as pool:
            for number, batch in enumerate(batches, 1):
                runnable = []
                for identity in batch:
                    reason = self._blocked_reason(identity)
                    if reason:
                        self._skip(identity, reason)
                    else:
                        runnable.append(identity)
                logger.debug("batch_dispatch", batch=number, resources=runnable)
                futures = [pool.submit(self._provision, identity) for identity in runnable]
                for future in as_completed(futures):
                    self._record(future.result())

        for result in self.results:
            if result["success"]:
                run["done"].append(result["id"])
                if result["verb"] == CREATE:
                    run["created"].append(result["id"])
        failed = sorted(r["id"] for r in self.results if not r["success"] and not r["skipped"])
        skipped = sorted(r["id"] for r in self.results if r["skipped"])
        self.status = PARTIALLY_FAILED if failed or skipped else COMPLETED
        run.update(
            status=self.status, finished_at=_now(), failed=failed, skipped=skipped,
            pending=failed + skipped, cancelled=self.cancelled,
            done=sorted(set(run["done"])), created=sorted(set(run["created"])),
        )
        self.store.set_run(run)

        outputs: dict[str, Any] = {}
        if self.status == COMPLETED:
            outputs = resolve_refs(self.registry.outputs(), self.store.outputs())
            self.store.set_stack_outputs(outputs, _now())

        changed = sum(1 for r in self.results if r["success"] and r["verb"] != NOOP)
        logger.info("apply_finished", status=self.status, failed=failed, skipped=skipped)
        if self.status == COMPLETED:
            print(f"\nApply complete! {changed} changed, "
                  f"{len(self.results) - changed} unchanged.\n")
        else:
            what = "cancelled" if self.cancelled else "failed"
            print(f"\nApply {what}. {len(run['done'])} resources done, "
                  f"{len(failed)} failed, {len(skipped)} not attempted.")
            print("State file updated. Run 'resume' to continue or 'rollback' to undo.\n")
        return {
            "status": self.status,
            "results": self.results,
            "failed": failed,
            "skipped": skipped,
            "cancelled": self.cancelled,
            "outputs": outputs,
        }

    def _blocked_reason(self, identity: str) -> str | None:
        if self.cancelled:
            return "cancelled"
        for dep in self.graph.get(identity, []):
            state = self.resource_states.get(dep)
            if state is None:
                # Outside this run: must already be provisioned
                if self.store.entry(dep) is None:
                    return f"dependency {dep} has not been provisioned"
            elif state != DONE:
                return f"dependency {dep} is {state}"
        return None

    def _skip(self, identity: str, reason: str, record: bool = True) -> dict[str, Any]:
        resource_type = self.registry.get(identity)["type"]
        self._print(identity, resource_type, NOOP, f"skipped ({reason})")
        result = _result(identity, NOOP, False, error=reason, skipped=True)
        if record:
            self._record(result)
        return result

    def _record(self, result: dict[str, Any]) -> None:
        identity = result["id"]
        if result["skipped"]:
            self.resource_states[identity] = SKIPPED
        else:
            self.resource_states[identity] = DONE if result["success"] else FAILED
        self.results.append(result)
        if not result["success"]:
            log = logger.info if result["skipped"] else logger.error
            log("resource_not_provisioned", resource=identity, error=result["error"],
                skipped=result["skipped"])

    def _provision(self, identity: str) -> dict[str, Any]:
        """Reconcile and provision one resource. Never raises; failures become results."""
        if self.cancelled:
            return self._skip(identity, "cancelled", record=False)
        self.resource_states[identity] = IN_PROGRESS
        definition = self.registry.get(identity)
        mod = RESOURCE_TYPES[definition["type"]]
        verb = NOOP
        try:
            entry = self.store.entry(identity)
            resolved = resolve_refs(definition["properties"], self.store.outputs())
            change = reconcile(definition, resolved, entry)
            verb = change["action"]

            if verb == NOOP and self.refresh:
                assert entry is not None
                described = mod.describe(self.backend, entry["identifier"])
                if not described.get("exists", True):
                    logger.warning("drift_detected", resource=identity,
                                   identifier=entry["identifier"])
                    change.update(action=CREATE, detail="missing from backend")
                    verb = CREATE

            if verb == NOOP:
                assert entry is not None
                self._print(identity, definition["type"], verb, CHECK)
                return _result(identity, verb, True, outputs=entry.get("outputs", {}))

            if change["affects_binding"]:
                affected = sorted(downstream(self.graph, [identity]))
                logger.warning("binding_replacement", resource=identity,
                               type=definition["type"], downstream=affected)
                self._print_line(
                    f"  ! {identity} will be replaced; dependent DNS/TLS bindings will be "
                    f"recomputed: {', '.join(affected) or '(none)'}"
                )

            if verb == CREATE:
                response = mod.create(self.backend, resolved)
                identifier = response["identifier"]
            else:
                assert entry is not None
                response = mod.update(self.backend, entry["identifier"], resolved)
                identifier = response.get("identifier") or entry["identifier"]
            outputs = response.get("outputs", {})

            entry = {
                "type": definition["type"],
                "specHash": change["spec_hash"],
                "identifier": identifier,
                "properties": resolved,
                "outputs": outputs,
                "dependsOn": list(self.graph.get(identity, [])),
                "lastAppliedTimestamp": _now(),
            }
            retired = None
            if change["replaces"]:
                retired = self._retire(identity, change["old"])
            # Committed without a hash before any readiness check: the
            # resource exists, so a later run must update it rather than
            # create a duplicate.
            self.store.commit(identity, dict(entry, specHash=None))
            if not mod.is_ready(outputs):
                entry["outputs"] = self._wait_ready(mod, identifier, outputs)
            self.store.commit(identity, entry)

            if retired:
                self._delete_replaced(identity, retired)

            self._print(identity, definition["type"], verb, CHECK)
            return _result(identity, verb, True, outputs=entry["outputs"])
        except Exception as e:
            error = _describe_error(e)
            logger.error("resource_failed", resource=identity, verb=verb, error=error,
                         exc_info=not isinstance(e, (BackendTransientError, BackendPermanentError)))
            self._print(identity, definition["type"], verb, f"{CROSS} ERROR: {error}")
            return _result(identity, verb, False, error=error)

    def _wait_ready(self, mod: Any, identifier: str, outputs: dict[str, Any]) -> dict[str, Any]:
        """Poll describe until the type reports ready, bounded by self.timeout."""
        deadline = time.monotonic() + self.timeout
        while not mod.is_ready(outputs):
            if time.monotonic() >= deadline:
                raise ProvisioningTimeout(
                    f"{identifier} was not ready after {self.timeout}s"
                )
            time.sleep(self.poll_interval)
            described = mod.describe(self.backend, identifier)
            if not described.get("exists", True):
                raise BackendPermanentError(f"{identifier} disappeared while waiting to become ready")
            outputs = described.get("outputs", outputs)
        return outputs

    def _retire(self, identity: str, old_entry: dict[str, Any]) -> str:
        """Keep a replaced resource in state under '<identity>~replaced' until it is deleted."""
        key = f"{identity}{RETIRED_SUFFIX}"
        n = 1
        while self.store.entry(key) is not None:
            n += 1
            key = f"{identity}{RETIRED_SUFFIX}{n}"
        self.store.commit(key, dict(old_entry))
        return key

    def _delete_replaced(self, identity: str, retired: str) -> None:
        old_entry = self.store.entry(retired)
        assert old_entry is not None
        old_mod = RESOURCE_TYPES.get(old_entry.get("type", ""))
        try:
            if old_mod is None:
                raise StateError(f"unknown resource type {old_entry.get('type')!r} in state")
            old_mod.delete(self.backend, old_entry["identifier"])
        except (BackendTransientError, BackendPermanentError, StateError) as e:
            logger.error("replaced_resource_not_deleted", resource=identity,
                         identifier=old_entry["identifier"], error=str(e))
            self._print_line(
                f"  ! {identity}: previous {old_entry['type']} {old_entry['identifier']} "
                f"could not be deleted: {_describe_error(e)}. Kept in state as "
                f"'{retired}'; run 'destroy --target {retired}' to remove it."
            )
            return
        self.store.remove(retired)

    # ------------------------------------------------------------------
    # rollback / destroy

    def rollback(self) -> dict[str, Any]:
        """Delete what the last apply created, dependents first. Best effort."""
        run = self.store.run()
        if not run or run.get("operation") != "apply" or not run.get("created"):
            raise StateError("Last run created nothing; nothing to roll back.")
        resources = self.store.resources()
        targets = [i for i in run["created"] if i in resources]
        order = teardown_order(state_graph(resources), only=targets)
        summary = self._teardown(order, "Rolling back")
        run.update(status=ROLLED_BACK, finished_at=_now(), rollback_failed=summary["failed"])
        self.store.set_run(run)
        self.status = ROLLED_BACK
        summary["status"] = ROLLED_BACK
        return summary

    def destroy(self, targets: list[str] | None = None) -> dict[str, Any]:
        """Delete state resources (all, or targets plus their dependents) in reverse order."""
        resources = self.store.resources()
        graph = state_graph(resources)
        if targets:
            unknown = [t for t in targets if t not in resources]
            if unknown:
                raise StateError(f"Not in state: {', '.join(unknown)}")
            selected = set(targets) | downstream(graph, targets)
        else:
            selected = set(resources)
        order = teardown_order(graph, only=selected)
        summary = self._teardown(order, "Destroying")
        status = PARTIALLY_FAILED if summary["failed"] else COMPLETED
        self.store.set_run({
            "operation": "destroy",
            "status": status,
            "started_at": summary["started_at"],
            "finished_at": _now(),
            "done": summary["done"],
            "created": [],
            "failed": summary["failed"],
            "skipped": [],
            "pending": summary["failed"],
            "cancelled": False,
        })
        self.status = status
        summary["status"] = status
        return summary

    def _teardown(self, order: list[str], verb_label: str) -> dict[str, Any]:
        """Delete resources one at a time in the given order, continuing past failures."""
        started_at = _now()
        self.results = []
        self._progress = 0
        self._total = len(order)
        print(f"\n{verb_label} {len(order)} resources...\n")
        for identity in order:
            entry = self.store.entry(identity)
            if entry is None:
                continue
            mod = RESOURCE_TYPES.get(entry["type"])
            try:
                if mod is None:
                    raise StateError(f"unknown resource type {entry['type']!r} in state")
                mod.delete(self.backend, entry["identifier"])
                self.store.remove(identity)
                self._print(identity, entry["type"], DELETE, CHECK)
                self.results.append(_result(identity, DELETE, True))
            except Exception as e:
                error = _describe_error(e)
                logger.error("resource_delete_failed", resource=identity, error=error)
                self._print(identity, entry["type"], DELETE, f"{CROSS} ERROR: {error}")
                self.results.append(_result(identity, DELETE, False, error=error))
        done = [r["id"] for r in self.results if r["success"]]
        failed = [r["id"] for r in self.results if not r["success"]]
        if failed:
            print(f"\n{verb_label} finished with errors. {len(done)} deleted, "
                  f"{len(failed)} failed: {', '.join(failed)}\n")
        else:
            print(f"\n{verb_label} complete! {len(done)} resources deleted.\n")
        return {"results": self.results, "done": done, "failed": failed,
                "order": order, "started_at": started_at}

    # ------------------------------------------------------------------
    # console

    def _print(self, identity: str, resource_type: str, verb: str, outcome: str) -> None:
        with self._print_lock:
            self._progress += 1
            prefix = f"  [{self._progress}/{self._total}]"
            print(f"{prefix} {SYMBOLS[verb]} {resource_type} \"{identity}\"  {outcome}", flush=True)

    def _print_line(self, line: str) -> None:
        with self._print_lock:
            print(line, flush=True)
