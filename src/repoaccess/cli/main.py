"""Command-line entry point: validate, plan or apply repository access."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

import httpx
import structlog

from ..backends.live import build_live_backends
from ..backends.memory import MemoryBackends
from ..common.context import RunContext
from ..common.errors import RepoAccessError
from ..common.observability import configure_logging, configure_tracing, shutdown_tracing
from ..common.settings import RunSettings
from ..orchestrator import Orchestrator, RunResult
from ..registry import RepositoryRegistry, load_stack_config
from ..state import load_outputs, save_outputs

LOGGER = structlog.get_logger("repoaccess.cli")

EXIT_OK = 0
EXIT_PROVIDER_ABORTED = 1
EXIT_FATAL = 2


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Provision CI access for declared GitHub repositories")
    parser.add_argument("--config", type=Path, help="Stack configuration file (overrides REPOACCESS_CONFIG)")
    parser.add_argument("--repositories", type=Path, help="Directory of repository declarations")
    parser.add_argument("--environment", help="Environment name used for labels and the state file")
    parser.add_argument("--log-format", choices=("json", "console"), default="json")

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Load and validate configuration only")
    validate_parser.add_argument("--json", action="store_true", help="Output raw JSON")

    plan_parser = subparsers.add_parser("plan", help="Run against in-memory backends and show the operations")
    plan_parser.add_argument("--json", action="store_true", help="Output raw JSON")

    apply_parser = subparsers.add_parser("apply", help="Provision against the live services")
    apply_parser.add_argument("--json", action="store_true", help="Output raw JSON")

    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> RunSettings:
    overrides: dict[str, Any] = {}
    if args.config is not None:
        overrides["REPOACCESS_CONFIG"] = args.config
    if args.repositories is not None:
        overrides["REPOACCESS_REPOSITORIES_DIR"] = args.repositories
    if args.environment:
        overrides["REPOACCESS_ENVIRONMENT"] = args.environment
    return RunSettings(**overrides)


def exit_code(result: RunResult) -> int:
    return EXIT_PROVIDER_ABORTED if result.aborted else EXIT_OK


def print_result(result: RunResult, operations: Optional[dict[str, list[str]]] = None) -> None:
    print(f"Repositories: {len(result.outputs.get('repositories', {}))}")
    for name in ("aws", "google", "scaleway"):
        section = result.outputs.get(name, {})
        print(f"{name}: {len(section.get('configured', {}))} configured, allowed {section.get('allowed', [])}")
    if result.validation.rejected:
        print("Rejected requests:")
        for issue in result.validation.rejected:
            print(f"  {issue.message}")
    if result.failed:
        print("Failed repositories:")
        for provider, failures in sorted(result.failed.items()):
            for repository, error in sorted(failures.items()):
                print(f"  [{provider}] {repository}: {error}")
    if result.aborted:
        print(f"Aborted providers: {', '.join(result.aborted)}")
    if result.deleted:
        print(f"Deleted repositories: {', '.join(result.deleted)}")
    if operations is not None:
        print("Planned operations:")
        for service, calls in operations.items():
            for call in calls:
                print(f"  {service}: {call}")


async def run(args: argparse.Namespace, settings: RunSettings) -> int:
    stack = load_stack_config(settings.config_path)
    registry = RepositoryRegistry.from_directory(settings.repositories_dir)

    if args.command == "validate":
        payload = {"owner": stack.repositories.owner, "repositories": registry.names}
        if args.json:
            print(json.dumps(payload, indent=2))
        else:
            print(f"Configuration valid: {len(registry)} repositories for {stack.repositories.owner}")
        return EXIT_OK

    previous = load_outputs(settings.state_path)
    context = RunContext.build(settings, stack, previous)
    repositories = list(registry)

    if args.command == "plan":
        memory = MemoryBackends.seeded(previous)
        result = await Orchestrator(stack, memory.as_backends()).run(context, repositories)
        operations = memory.planned()
        if args.json:
            print(json.dumps({"operations": operations, "outputs": result.outputs, **result.summary()}, indent=2))
        else:
            print_result(result, operations)
        return exit_code(result)

    async with httpx.AsyncClient(timeout=settings.request_timeout_seconds) as client:
        backends = build_live_backends(settings, stack, client)
        result = await Orchestrator(stack, backends).run(context, repositories)
    save_outputs(settings.state_path, result.outputs)
    LOGGER.info("Outputs saved", path=str(settings.state_path))
    if args.json:
        print(json.dumps({"outputs": result.outputs, **result.summary()}, indent=2))
    else:
        print_result(result)
    return exit_code(result)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings(args)
    except ValueError as exc:
        print(f"Invalid settings: {exc}", file=sys.stderr)
        return EXIT_FATAL
    configure_logging(
        "repoaccess",
        settings.log_level,
        json_output=args.log_format == "json",
        environment=settings.environment,
    )
    configure_tracing(
        "repoaccess",
        settings.otel_exporter_endpoint,
        settings.otel_exporter_headers,
        settings.otel_sampler_ratio,
    )
    try:
        return asyncio.run(run(args, settings))
    except RepoAccessError as exc:
        LOGGER.error("Run failed", error=str(exc), error_type=type(exc).__name__)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FATAL
    finally:
        shutdown_tracing()


if __name__ == "__main__":
    sys.exit(main())
