#!/usr/bin/env python3
"""CLI entry point for the API gateway stack deployment tool."""

from __future__ import annotations

import argparse
import os
import signal
import sys
from typing import Any

import structlog

from apigw_ops.exceptions import StackError, StateError, SynthesisStalled
from apigw_ops.executor import (
    COMPLETED,
    DEFAULT_PARALLELISM,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TIMEOUT,
    Executor,
)
from apigw_ops.graph import build_graph, format_graph
from apigw_ops.logging import bind_context, configure_logging
from apigw_ops.planner import (
    check_plan,
    generate_plan,
    has_changes,
    load_plan,
    print_plan,
    save_plan,
)
from apigw_ops.provisioning_client import ProvisioningClient
from apigw_ops.registry import Registry
from apigw_ops.sandbox import SandboxBackend
from apigw_ops.stack import serverless_api_stack
from apigw_ops.stack_reader import read_stack, write_stack
from apigw_ops.state import DEFAULT_STATE_FILE, StateStore, get_backend, load_state
from apigw_ops.synthesizer import synthesize

logger = structlog.get_logger()

DEFAULT_STACK_FILE = "stack.json"
DEFAULT_SANDBOX_FILE = ".apigw-sandbox.json"

# Exit codes
EXIT_OK = 0
EXIT_INVALID = 1
EXIT_PARTIAL = 2
EXIT_INTERNAL = 3


def add_common_args(parser: argparse.ArgumentParser) -> None:
    """Add arguments shared across subcommands."""
    parser.add_argument("--stack-file",
                        help=f"Path to stack file (or APIGW_STACK_FILE, default: {DEFAULT_STACK_FILE})")
    # State backend
    parser.add_argument("--backend", choices=["local", "azure"],
                        help="State backend type (default: local)")
    parser.add_argument("--state-file",
                        help=f"Path to local state file (default: {DEFAULT_STATE_FILE})")
    parser.add_argument("--backend-storage-account", help="Azure storage account for state")
    parser.add_argument("--backend-container", help="Azure blob container for state")
    parser.add_argument("--backend-blob", help="Azure blob path for state")
    parser.add_argument("--ignore-checksum", action="store_true",
                        help="Load state even when its checksum does not match")
    # Auth
    parser.add_argument("--client-id", help="Service principal client ID")
    parser.add_argument("--client-secret", help="Service principal client secret")
    parser.add_argument("--tenant-id", help="Azure AD tenant ID")
    parser.add_argument("--log-level", help="Diagnostic log level (or APIGW_LOG_LEVEL, default: WARNING)")


def add_provider_args(parser: argparse.ArgumentParser) -> None:
    """Add provisioning backend and execution arguments."""
    parser.add_argument("--provider", choices=["rest", "sandbox"],
                        help="Provisioning backend (or APIGW_PROVIDER, default: rest)")
    parser.add_argument("--endpoint", help="Provisioning API base URL (or APIGW_ENDPOINT)")
    parser.add_argument("--token", help="Bearer token for the provisioning API (or APIGW_TOKEN)")
    parser.add_argument("--token-scope",
                        help="Acquire an Azure AD token for this scope instead of --token")
    parser.add_argument("--sandbox-file",
                        help=f"Sandbox backend state file (default: {DEFAULT_SANDBOX_FILE})")
    parser.add_argument("--parallelism", type=int, default=DEFAULT_PARALLELISM,
                        help=f"Resources provisioned concurrently per batch (default: {DEFAULT_PARALLELISM})")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                        help=f"Seconds to wait for a resource to become ready (default: {DEFAULT_TIMEOUT})")
    parser.add_argument("--poll-interval", type=float, default=DEFAULT_POLL_INTERVAL,
                        help=f"Seconds between readiness checks (default: {DEFAULT_POLL_INTERVAL})")


def _stack_file(args: argparse.Namespace) -> str:
    return (getattr(args, "stack_file", None)
            or os.environ.get("APIGW_STACK_FILE")
            or DEFAULT_STACK_FILE)


def _load_registry(args: argparse.Namespace) -> Registry:
    return Registry.from_stack(read_stack(_stack_file(args)))


def _load_state(args: argparse.Namespace, backend: Any) -> dict[str, Any]:
    state = load_state(backend, ignore_checksum=args.ignore_checksum)
    if state is None:
        print("Error: State file not found. Run 'init' first.", file=sys.stderr)
        sys.exit(EXIT_INVALID)
    return state


def _make_provider(args: argparse.Namespace) -> Any:
    """Create the provisioning backend from flags → env vars → defaults."""
    provider = getattr(args, "provider", None) or os.environ.get("APIGW_PROVIDER", "rest")
    if provider == "sandbox":
        path = (getattr(args, "sandbox_file", None)
                or os.environ.get("APIGW_SANDBOX_FILE")
                or DEFAULT_SANDBOX_FILE)
        return SandboxBackend(path)
    if provider != "rest":
        raise ValueError(f"Unknown provider {provider!r} (expected rest or sandbox)")
    endpoint = getattr(args, "endpoint", None) or os.environ.get("APIGW_ENDPOINT")
    if not endpoint:
        raise ValueError("--endpoint or APIGW_ENDPOINT is required for the rest provider")
    return ProvisioningClient(
        endpoint,
        token=getattr(args, "token", None) or os.environ.get("APIGW_TOKEN"),
        token_scope=getattr(args, "token_scope", None),
        client_id=args.client_id, client_secret=args.client_secret, tenant_id=args.tenant_id,
    )


def _make_executor(args: argparse.Namespace, registry: Registry, graph: dict[str, list[str]],
                   store: StateStore) -> Executor:
    executor = Executor(
        registry, graph, _make_provider(args), store,
        parallelism=args.parallelism, timeout=args.timeout,
        poll_interval=args.poll_interval,
    )

    def _on_sigint(signum: int, frame: Any) -> None:
        print("\nInterrupt received; finishing in-flight resources...", flush=True)
        executor.cancel()

    signal.signal(signal.SIGINT, _on_sigint)
    return executor


def _confirm(question: str) -> bool:
    answer = input(f"{question} (yes/no): ")
    return answer.lower() in ("yes", "y")


def _print_outputs(outputs: dict[str, Any]) -> None:
    if not outputs:
        return
    print("Outputs:\n")
    for name in sorted(outputs):
        print(f"  {name} = {outputs[name]}")
    print()


def cmd_init(args: argparse.Namespace) -> None:
    """Initialize an empty state file, and optionally write the stack template."""
    backend = get_backend(args)

    existing_state = backend.read()
    if existing_state and not args.force:
        print("Error: State file already exists. Use --force to overwrite.", file=sys.stderr)
        sys.exit(EXIT_INVALID)

    stack_name = args.stack_name
    if args.domain:
        if not args.hosted_zone_id:
            print("Error: --hosted-zone-id is required with --domain.", file=sys.stderr)
            sys.exit(EXIT_INVALID)
        stack_file = _stack_file(args)
        if os.path.exists(stack_file) and not args.force:
            print(f"Error: {stack_file} already exists. Use --force to overwrite.", file=sys.stderr)
            sys.exit(EXIT_INVALID)
        stack = serverless_api_stack(
            args.domain, args.hosted_zone_id, record_name=args.record_name,
            stack_name=stack_name,
        )
        # Validates the template the same way a hand-written stack file is validated
        build_graph(Registry.from_stack(stack))
        write_stack(stack, stack_file)
        print(f"Wrote stack template to {stack_file}")

    backend.init(stack_name)
    print("Initialized empty state file.")
    if isinstance(getattr(backend, "state_file", None), str):
        print(f"  Backend: local ({backend.state_file})")
    else:
        print("  Backend: azure")


def cmd_plan(args: argparse.Namespace) -> None:
    """Generate a plan showing what would change."""
    backend = get_backend(args)
    state = _load_state(args, backend)
    registry = _load_registry(args)

    plan = generate_plan(registry, state)
    print_plan(plan, verbose=args.verbose)

    if args.out:
        save_plan(plan, args.out)


def cmd_graph(args: argparse.Namespace) -> None:
    """Print the dependency edges and provisioning batches."""
    registry = _load_registry(args)
    graph = build_graph(registry)
    print("\nDependencies:\n")
    for line in format_graph(graph).splitlines():
        print(f"  {line}")
    print("\nBatches:\n")
    for number, batch in enumerate(synthesize(graph), 1):
        print(f"  {number}. {', '.join(batch)}")
    print()


def cmd_apply(args: argparse.Namespace) -> None:
    """Provision the stack."""
    backend = get_backend(args)
    state = _load_state(args, backend)
    registry = _load_registry(args)
    graph = build_graph(registry)

    if args.plan:
        plan = load_plan(args.plan)
        check_plan(plan, registry)
    else:
        plan = generate_plan(registry, state)

    if not has_changes(plan) and not args.refresh:
        print("\nNo changes. Infrastructure is up-to-date.\n")
        sys.exit(EXIT_OK)

    print_plan(plan)

    if not args.auto_approve and not _confirm("Do you want to apply these changes?"):
        print("Apply cancelled.")
        sys.exit(EXIT_OK)

    backend.lock()
    try:
        store = StateStore(backend, _load_state(args, backend))
        executor = _make_executor(args, registry, graph, store)
        executor.refresh = args.refresh
        result = executor.apply()
    finally:
        backend.unlock()

    _print_outputs(result["outputs"])
    sys.exit(EXIT_OK if result["status"] == COMPLETED else EXIT_PARTIAL)


def cmd_resume(args: argparse.Namespace) -> None:
    """Continue a partially failed apply."""
    backend = get_backend(args)
    registry = _load_registry(args)
    graph = build_graph(registry)

    backend.lock()
    try:
        store = StateStore(backend, _load_state(args, backend))
        executor = _make_executor(args, registry, graph, store)
        result = executor.resume()
    finally:
        backend.unlock()

    _print_outputs(result["outputs"])
    sys.exit(EXIT_OK if result["status"] == COMPLETED else EXIT_PARTIAL)


def cmd_rollback(args: argparse.Namespace) -> None:
    """Delete the resources created by the last apply."""
    backend = get_backend(args)
    backend.lock()
    try:
        state = _load_state(args, backend)
        store = StateStore(backend, state)
        executor = _make_executor(args, Registry(state.get("stack") or "default"), {}, store)
        result = executor.rollback()
    finally:
        backend.unlock()
    sys.exit(EXIT_PARTIAL if result["failed"] else EXIT_OK)


def cmd_destroy(args: argparse.Namespace) -> None:
    """Delete provisioned resources in reverse dependency order."""
    backend = get_backend(args)
    state = _load_state(args, backend)
    if not state["resources"]:
        print("\nNothing to destroy.\n")
        sys.exit(EXIT_OK)

    what = ", ".join(args.target) if args.target else f"all {len(state['resources'])} resources"
    if not args.auto_approve and not _confirm(f"Destroy {what} (and their dependents)?"):
        print("Destroy cancelled.")
        sys.exit(EXIT_OK)

    backend.lock()
    try:
        state = _load_state(args, backend)
        store = StateStore(backend, state)
        executor = _make_executor(args, Registry(state.get("stack") or "default"), {}, store)
        result = executor.destroy(args.target or None)
    finally:
        backend.unlock()
    sys.exit(EXIT_PARTIAL if result["failed"] else EXIT_OK)


def cmd_force_unlock(args: argparse.Namespace) -> None:
    """Force-unlock a stuck state file."""
    backend = get_backend(args)
    backend.force_unlock()
    print("Lock released.")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="API gateway stack deployment tool (Terraform-style plan & apply)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # init
    p_init = subparsers.add_parser("init", help="Initialize empty state (and optionally a stack file)")
    add_common_args(p_init)
    p_init.add_argument("--stack-name", default="serverless-api", help="Stack name recorded in state")
    p_init.add_argument("--domain", help="Write the API stack template for this apex domain")
    p_init.add_argument("--hosted-zone-id", help="Hosted zone for certificate validation and the alias record")
    p_init.add_argument("--record-name", help="API hostname (default: api.<domain>)")
    p_init.add_argument("--force", action="store_true",
                        help="Overwrite existing state and stack files (use with caution)")

    # plan
    p_plan = subparsers.add_parser("plan", help="Show what would change")
    add_common_args(p_plan)
    p_plan.add_argument("--out", help="Save plan to JSON file")
    p_plan.add_argument("--verbose", "-v", action="store_true",
                        help="Show unchanged resources")

    # apply
    p_apply = subparsers.add_parser("apply", help="Provision the stack")
    add_common_args(p_apply)
    add_provider_args(p_apply)
    p_apply.add_argument("--plan", help="Path to saved plan file")
    p_apply.add_argument("--auto-approve", action="store_true",
                         help="Skip confirmation prompt")
    p_apply.add_argument("--refresh", action="store_true",
                         help="Check unchanged resources still exist and recreate missing ones")

    # resume
    p_resume = subparsers.add_parser("resume", help="Continue a partially failed apply")
    add_common_args(p_resume)
    add_provider_args(p_resume)

    # rollback
    p_rollback = subparsers.add_parser("rollback", help="Delete resources created by the last apply")
    add_common_args(p_rollback)
    add_provider_args(p_rollback)

    # destroy
    p_destroy = subparsers.add_parser("destroy", help="Delete provisioned resources")
    add_common_args(p_destroy)
    add_provider_args(p_destroy)
    p_destroy.add_argument("--target", action="append", default=[],
                           help="Only destroy this resource and its dependents (repeatable)")
    p_destroy.add_argument("--auto-approve", action="store_true",
                           help="Skip confirmation prompt")

    # graph
    p_graph = subparsers.add_parser("graph", help="Print dependencies and provisioning batches")
    add_common_args(p_graph)

    # force-unlock
    p_unlock = subparsers.add_parser("force-unlock",
                                     help="Force-unlock a stuck state file")
    add_common_args(p_unlock)

    args = parser.parse_args()

    commands = {
        "init": cmd_init,
        "plan": cmd_plan,
        "apply": cmd_apply,
        "resume": cmd_resume,
        "rollback": cmd_rollback,
        "destroy": cmd_destroy,
        "graph": cmd_graph,
        "force-unlock": cmd_force_unlock,
    }
    try:
        configure_logging(args.log_level)
        bind_context(command=args.command)
        commands[args.command](args)
    except (StackError, StateError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_INVALID)
    except SynthesisStalled as e:
        print(f"Internal error: {e}", file=sys.stderr)
        sys.exit(EXIT_INTERNAL)
    except Exception as e:
        logger.exception("internal_error", command=args.command)
        print(f"Internal error: {e}", file=sys.stderr)
        sys.exit(EXIT_INTERNAL)


if __name__ == "__main__":
    main()
