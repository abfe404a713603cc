"""Command-line interface for docker-ops-manager."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Callable, List, Optional

from docker_ops_manager import __version__
from docker_ops_manager.config import Settings
from docker_ops_manager.core.batch import BatchResult
from docker_ops_manager.core.orchestrator import LifecycleOrchestrator, OperationKind, OperationRequest
from docker_ops_manager.errors import DockerOpsError, StateCorruption, ValidationError
from docker_ops_manager.main import EXIT_FAILURE, EXIT_OK, EXIT_STATE_CORRUPTION, EXIT_USAGE, build_store, run
from docker_ops_manager.utils.logger import logger, set_level

NAMED_COMMANDS = ("install", "reinstall", "update", "start", "stop", "restart")


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError("must be positive")
    return number


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}")
    if number < 0:
        raise argparse.ArgumentTypeError("must not be negative")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docker-ops-manager",
        description="docker-ops-manager - Lifecycle manager for spec-defined Docker containers"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: DOCKER_OPS_LOG_LEVEL or INFO)"
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands"
    )

    # Generate command
    generate_parser = subparsers.add_parser(
        "generate",
        help="Create containers from a YAML spec file"
    )
    generate_parser.add_argument("file", help="Compose or custom YAML spec file")
    generate_parser.add_argument(
        "names",
        nargs="*",
        help="Workloads to create (default: every workload in the file)"
    )
    generate_parser.add_argument("--force", action="store_true", help="Replace existing containers")
    generate_parser.add_argument("--no-start", action="store_true", help="Create without starting")
    generate_parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=None,
        help="Readiness timeout in seconds"
    )

    # Commands taking container names
    helps = {
        "install": "Recreate containers from their tracked spec file",
        "reinstall": "Remove and recreate existing containers",
        "update": "Recreate containers, keeping their running state",
        "start": "Start containers and wait for readiness",
        "stop": "Stop containers",
        "restart": "Stop, start and wait for readiness",
    }
    for command in NAMED_COMMANDS:
        sub = subparsers.add_parser(command, help=helps[command])
        sub.add_argument(
            "names",
            nargs="*",
            help="Container names (default: last container)"
        )
        sub.add_argument(
            "--timeout",
            type=_positive_float,
            default=None,
            help="Readiness timeout in seconds (grace period for stop)"
        )
        if command == "install":
            sub.add_argument("--force", action="store_true", help="Replace existing containers")
            sub.add_argument("--no-start", action="store_true", help="Create without starting")

    # Cleanup command
    cleanup_parser = subparsers.add_parser(
        "cleanup",
        help="Remove containers and their tracked records"
    )
    cleanup_parser.add_argument(
        "names",
        nargs="*",
        help="Container names (default: last container)"
    )
    scope = cleanup_parser.add_mutually_exclusive_group()
    scope.add_argument("--all", dest="all_state", action="store_true", help="Every tracked container")
    scope.add_argument(
        "--all-runtime",
        action="store_true",
        help="Every container the runtime reports, tracked or not"
    )
    cleanup_parser.add_argument("--force", action="store_true", help="Force removal, skip confirmation")
    cleanup_parser.add_argument("--yes", action="store_true", help="Answer yes to confirmation prompts")

    # Status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show tracked and live container status"
    )
    status_parser.add_argument("names", nargs="*", help="Container names (default: all tracked)")

    # List command
    subparsers.add_parser(
        "list",
        help="List containers created by docker-ops-manager"
    )

    # Logs command
    logs_parser = subparsers.add_parser(
        "logs",
        help="Show container logs"
    )
    logs_parser.add_argument("name", nargs="?", help="Container name (default: last container)")
    logs_parser.add_argument(
        "--tail",
        type=_non_negative_int,
        default=None,
        help="Number of lines from the end (default: all)"
    )
    logs_parser.add_argument("--timestamps", action="store_true", help="Show timestamps")
    logs_parser.add_argument("--grep", default=None, help="Only lines matching this pattern (case-insensitive)")

    # State maintenance
    state_parser = subparsers.add_parser(
        "state",
        help="Inspect or maintain the state file"
    )
    state_sub = state_parser.add_subparsers(dest="state_command")
    state_sub.add_parser("show", help="Print the state summary")
    state_sub.add_parser("backup", help="Copy the state file to a timestamped backup")
    state_sub.add_parser("reset", help="Clear all tracked state")
    restore_parser = state_sub.add_parser("restore", help="Restore the state file from a backup")
    restore_parser.add_argument("file", help="Backup file to restore")

    # Config command
    subparsers.add_parser(
        "config",
        help="Show resolved configuration"
    )

    # Version command
    subparsers.add_parser(
        "version",
        help="Show version information"
    )

    return parser


def _confirm_prompt(names: List[str]) -> bool:
    print(f"This will remove {len(names)} container(s): {', '.join(names)}")
    try:
        answer = input("Continue? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _default_names(orchestrator: LifecycleOrchestrator, names: List[str]) -> List[str]:
    if names:
        return names
    last = orchestrator.store.state.last_container
    if not last:
        raise ValidationError("no container name given and no last container recorded")
    logger.info(f"Using last container: {last}")
    return [last]


def print_batch(result: BatchResult) -> int:
    for outcome in result.outcomes:
        if outcome.ok:
            print(f"✓ {result.operation} {outcome.target}")
            for warning in outcome.warnings:
                print(f"  ! {warning}")
        else:
            print(f"✗ {result.operation} {outcome.target}: {outcome.reason}")
    if result.total > 1:
        print(result.summary())
    return EXIT_OK if result.ok else EXIT_FAILURE


def print_status(rows: List[dict]) -> None:
    if not rows:
        print("No tracked containers")
        return
    header = f"{'NAME':<30} {'TRACKED':<10} {'LIVE':<10} {'HEALTH':<10} {'READINESS':<10} LAST OP"
    print(header)
    for row in rows:
        if row["exists"] is None:
            live = "?"
        elif not row["exists"]:
            live = "missing"
        else:
            live = "running" if row["running"] else "stopped"
        print(
            f"{row['name']:<30} {row['status'] or '-':<10} {live:<10} {row['health'] or '-':<10} "
            f"{row['readiness'] or '-':<10} {row['last_operation'] or '-'}"
        )


def print_managed(rows: List[dict]) -> None:
    if not rows:
        print("No managed containers")
        return
    print(f"{'NAME':<30} {'STATE':<10} {'TRACKED':<8} SOURCE")
    for row in rows:
        state = "?" if row["running"] is None else ("running" if row["running"] else "stopped")
        tracked = "yes" if row["tracked"] else "no"
        print(f"{row['name']:<30} {state:<10} {tracked:<8} {row['source'] or '-'}")


def _operation_for(args: argparse.Namespace) -> Callable[[LifecycleOrchestrator], int]:
    def execute(orchestrator: LifecycleOrchestrator) -> int:
        command = args.command
        if command == "generate":
            request = OperationRequest(
                kind=OperationKind.GENERATE,
                source=args.file,
                targets=tuple(args.names),
                force=args.force,
                no_start=args.no_start,
                timeout=args.timeout,
            )
        elif command == "cleanup":
            names = args.names
            if not (names or args.all_state or args.all_runtime):
                names = _default_names(orchestrator, names)
            request = OperationRequest(
                kind=OperationKind.CLEANUP,
                targets=tuple(names),
                force=args.force,
                all_state=args.all_state,
                all_runtime=args.all_runtime,
            )
        elif command == "status":
            print_status(orchestrator.status(args.names))
            return EXIT_OK
        elif command == "list":
            print_managed(orchestrator.managed())
            return EXIT_OK
        elif command == "logs":
            name = _default_names(orchestrator, [args.name] if args.name else [])[0]
            for line in orchestrator.logs(name, tail=args.tail, timestamps=args.timestamps, pattern=args.grep):
                print(line)
            return EXIT_OK
        else:
            request = OperationRequest(
                kind=OperationKind(command),
                targets=tuple(_default_names(orchestrator, args.names)),
                force=getattr(args, "force", False),
                no_start=getattr(args, "no_start", False),
                timeout=args.timeout,
            )
        return print_batch(orchestrator.execute(request))

    return execute


def _state_command(args: argparse.Namespace, settings: Settings) -> int:
    store = build_store(settings)
    sub = args.state_command or "show"
    if sub == "show":
        store.load()
        print(json.dumps(store.summary(), indent=2))
    elif sub == "backup":
        print(f"State backed up to: {store.backup()}")
    elif sub == "reset":
        store.clear()
        print("State cleared")
    elif sub == "restore":
        store.restore(Path(args.file))
        print(f"State restored from: {args.file}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None, *, runtime: Any = None) -> int:
    """
    Run the docker-ops-manager CLI.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.
        runtime: Runtime adapter override, used by tests.

    Returns:
        Exit code (0 success, 1 failure, 2 usage error, 3 state corruption).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_USAGE

    if args.command == "version":
        print(f"docker-ops-manager version {__version__}")
        return EXIT_OK

    try:
        settings = Settings.load()
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    if args.log_level:
        set_level(args.log_level)

    if args.command == "config":
        print(json.dumps(settings.model_dump(mode="json"), indent=2))
        return EXIT_OK

    try:
        if args.command == "state":
            return _state_command(args, settings)
        confirm = (lambda names: True) if getattr(args, "yes", False) else _confirm_prompt
        return run(_operation_for(args), settings, runtime=runtime, confirm=confirm)
    except StateCorruption as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_STATE_CORRUPTION
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except (DockerOpsError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
