"""
Command-line entry point for Personal Budget.

This is what the system scheduler invokes (e.g. a daily crontab entry):

    python -m app.main run
    python -m app.main run --as-of 2024-02-05
    python -m app.main project --owner user-1 --until 2024-12-31

Overlapping runs must be prevented by the scheduler (single instance);
inside one process the job refuses a second concurrent run.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date

from src.config import get_settings
from src.orchestrator import RunInProgressError, create_app_components


def setup_logging(verbose: bool = False) -> None:
    """Configure stdlib logging, which structlog renders through."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(message)s")


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="personal-budget",
        description="Process recurring budget items and project upcoming ones",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--no-storage",
        action="store_true",
        help="Use an empty in-memory store instead of Google Sheets",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Process all due recurring items once")
    run_parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Reference date YYYY-MM-DD (default: today)",
    )

    project_parser = subparsers.add_parser(
        "project", help="List upcoming occurrences of an owner's recurring items"
    )
    project_parser.add_argument("--owner", required=True, help="Owner user id")
    project_parser.add_argument(
        "--until",
        type=date.fromisoformat,
        required=True,
        help="Last date to include, YYYY-MM-DD",
    )
    project_parser.add_argument(
        "--since",
        type=date.fromisoformat,
        default=None,
        help="First date to include, YYYY-MM-DD",
    )

    return parser


def cmd_run(job, as_of) -> int:
    try:
        result = asyncio.run(job.run_once(as_of))
    except RunInProgressError as e:
        print(f"❌ {e}")
        return 1

    print(json.dumps(result.to_summary(), indent=2))
    for failure in result.failures:
        print(f"  failed {failure.item_id}: {failure.stage.value} {failure.message}")
    return 0 if result.success else 2


def cmd_project(job, owner: str, until: date, since) -> int:
    projections = asyncio.run(job.project_owner(owner, until=until, since=since))
    currency = get_settings().app.currency_label
    for p in projections:
        print(
            f"{p.occurs_on.isoformat()}  {p.name:<30} "
            f"{currency} {p.signed_amount:>12,.2f}  {p.category}"
        )
    print(f"{len(projections)} occurrences")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    try:
        job = create_app_components(use_storage=not parsed.no_storage)
    except Exception as e:
        print(f"❌ Failed to initialize: {e}")
        return 1

    if parsed.command == "run":
        return cmd_run(job, parsed.as_of)
    elif parsed.command == "project":
        return cmd_project(job, parsed.owner, parsed.until, parsed.since)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
