#!/usr/bin/env python3
"""topocraft command line.

Usage:
    topocraft plan    [-f FILE] [--state PATH]
    topocraft apply   [-f FILE] [--state PATH] [--dry-run] [--max-concurrency N] [--retry]
    topocraft destroy [-f FILE] [--state PATH]
    topocraft history [--audit-log PATH] [--limit N]

Exit codes:
    0  everything applied (or nothing to do)
    1  declaration or planning error; nothing was changed
    2  apply finished with failed or skipped operations
    3  apply was cancelled
"""
import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

from .config.settings import load_settings
from .engine import TopologyEngine, load_declaration, summarize_plan
from .engine.schema import ApplyResult, OperationStatus
from .errors import CycleError, ConflictError, PLANNING_ERRORS, ProviderError
from .providers import PROVIDER_TYPES, create_provider
from .utils.audit_log import default_audit_file, get_recent_operations
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PLANNING_ERROR = 1
EXIT_APPLY_FAILED = 2
EXIT_CANCELLED = 3

DEFAULT_DECLARATION = Path("topocraft.yaml")
DEFAULT_STATE = Path(".topocraft") / "state.yaml"

STATUS_MARKS = {
    OperationStatus.APPLIED: "ok",
    OperationStatus.FAILED: "FAILED",
    OperationStatus.SKIPPED: "skipped",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="topocraft",
        description="Plan and apply deployment topologies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show what would change
    topocraft plan -f stack.yaml

    # Apply with up to 8 concurrent operations, retrying throttling errors
    topocraft apply -f stack.yaml --max-concurrency 8 --retry

    # Tear down everything the declaration manages
    topocraft destroy -f stack.yaml

Environment:
    TOPOCRAFT_LOG_LEVEL         Console log level (default: WARNING for the CLI)
    TOPOCRAFT_MAX_CONCURRENCY   Default concurrency
    TOPOCRAFT_AUDIT_LOG         Audit log path
""",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-f", "--file",
        type=Path,
        default=DEFAULT_DECLARATION,
        help=f"Declaration file (default: {DEFAULT_DECLARATION})",
    )
    common.add_argument(
        "--state",
        type=Path,
        default=DEFAULT_STATE,
        help=f"State file for the local provider (default: {DEFAULT_STATE})",
    )
    common.add_argument(
        "--provider",
        choices=sorted(PROVIDER_TYPES),
        default="local",
        help="Provider adapter (default: local)",
    )
    common.add_argument(
        "--audit-log",
        type=str,
        default=None,
        help="Audit log path (default: TOPOCRAFT_AUDIT_LOG or ~/.topocraft/audit.log)",
    )
    common.add_argument(
        "--no-replace",
        dest="replace_on_conflict",
        action="store_const",
        const=False,
        default=None,
        help="Fail instead of replacing resources whose immutable properties changed",
    )

    execution = argparse.ArgumentParser(add_help=False)
    execution.add_argument(
        "--dry-run",
        action="store_true",
        help="Plan and report without calling the provider",
    )
    execution.add_argument(
        "--max-concurrency",
        dest="max_concurrent_operations",
        type=int,
        default=None,
        help="Maximum operations in flight",
    )
    execution.add_argument(
        "--retry",
        dest="retry_transient_errors",
        action="store_const",
        const=True,
        default=None,
        help="Retry operations that fail with transient provider errors",
    )
    execution.add_argument(
        "--retry-limit",
        type=int,
        default=None,
        help="Retries per operation when --retry is set",
    )
    execution.add_argument(
        "--stop-on-error",
        action="store_const",
        const=True,
        default=None,
        help="Start no new operations after the first failure",
    )
    execution.add_argument(
        "--json",
        action="store_true",
        help="Print the apply result as JSON",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("plan", parents=[common], help="Show the operations needed")
    sub.add_parser("apply", parents=[common, execution], help="Apply the declaration")
    sub.add_parser("destroy", parents=[common, execution], help="Delete declared resources")

    history = sub.add_parser("history", help="Show recent operations from the audit log")
    history.add_argument("--audit-log", type=str, default=None, help="Audit log path")
    history.add_argument("--name", type=str, default=None, help="Only this resource")
    history.add_argument("--limit", type=int, default=20, help="Records to show (default: 20)")

    return parser


def format_result(result: ApplyResult) -> str:
    """Per-operation breakdown of an apply."""
    lines = []
    for item in result.results:
        mark = STATUS_MARKS.get(item.status, item.status.value)
        line = f"  [{mark:>7}] {item.operation.describe()}"
        if item.error:
            line += f": {item.error}"
        elif item.reason and item.status == OperationStatus.SKIPPED:
            line += f" ({item.reason})"
        lines.append(line)

    lines.append("")
    verdict = "Dry run" if result.dry_run else ("Cancelled" if result.cancelled else (
        "Apply complete" if result.success else "Apply incomplete"
    ))
    lines.append(
        f"{verdict}: {len(result.applied)} applied, "
        f"{len(result.failed)} failed, {len(result.skipped)} skipped"
    )
    return "\n".join(lines)


def exit_code(result: ApplyResult) -> int:
    if result.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if result.success else EXIT_APPLY_FAILED


async def run(args: argparse.Namespace) -> int:
    """Run plan, apply or destroy."""
    desired = load_declaration(args.file)

    overrides = {
        "audit_log": args.audit_log,
        "replace_on_conflict": args.replace_on_conflict,
    }
    if args.command in ("apply", "destroy"):
        overrides.update(
            max_concurrent_operations=args.max_concurrent_operations,
            retry_transient_errors=args.retry_transient_errors,
            retry_limit=args.retry_limit,
            stop_on_error=args.stop_on_error,
        )
    settings = load_settings(args.file, **overrides)
    if not settings.audit_log:
        settings = settings.merged(audit_log=default_audit_file())

    provider = create_provider(args.provider, {"state_path": str(args.state)})
    async with provider:
        engine = TopologyEngine(provider, settings)

        if args.command == "plan":
            print(await engine.preview(desired))
            return EXIT_OK

        if args.command == "apply":
            plan = await engine.plan(desired)
            if not args.json:
                print(summarize_plan(plan))
                print("")
            _install_cancel_handler(engine)
            result = await engine.execute(plan, dry_run=args.dry_run)
        else:
            _install_cancel_handler(engine)
            result = await engine.destroy(desired, dry_run=args.dry_run)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(format_result(result))
    return exit_code(result)


def _install_cancel_handler(engine: TopologyEngine) -> None:
    """Ctrl-C stops dispatching and lets in-flight operations finish."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, engine.cancel)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers not supported; Ctrl-C will abort")


def show_history(args: argparse.Namespace) -> int:
    records = get_recent_operations(
        log_file=args.audit_log,
        name=args.name,
        limit=args.limit,
    )
    if not records:
        print("No recorded operations")
        return EXIT_OK

    for record in records:
        line = (
            f"{record.timestamp}  {record.run_id}  {record.status:8s} "
            f"{record.action:7s} {record.kind} {record.name}"
        )
        if record.error:
            line += f"  ({record.error})"
        print(line)
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = "DEBUG" if args.verbose else os.environ.get("TOPOCRAFT_LOG_LEVEL", "WARNING")
    setup_logging(level=level)

    if args.command == "history":
        return show_history(args)

    try:
        return asyncio.run(run(args))
    except CycleError as e:
        print(f"Dependency cycle: {', '.join(e.members)}", file=sys.stderr)
        return EXIT_PLANNING_ERROR
    except ConflictError as e:
        print(f"Conflict: {e}", file=sys.stderr)
        return EXIT_PLANNING_ERROR
    except PLANNING_ERRORS as e:
        print(f"Invalid declaration: {e}", file=sys.stderr)
        errors = getattr(e, "errors", [])
        if len(errors) > 1:
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
        return EXIT_PLANNING_ERROR
    except ProviderError as e:
        # describe_all failed: nothing was planned, nothing changed
        print(f"Provider error: {e}", file=sys.stderr)
        return EXIT_PLANNING_ERROR
    except KeyboardInterrupt:
        print("Cancelled", file=sys.stderr)
        return EXIT_CANCELLED


if __name__ == "__main__":
    sys.exit(main())
