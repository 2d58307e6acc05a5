"""Command line entry for doclink.

    doclink reconcile [--max-items N] [--json]
    doclink init-db
    doclink serve
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from doclink.core.config import settings
from doclink.core.database import (
    async_session_maker,
    close_database,
    init_database,
    staging_session_maker,
)
from doclink.schemas.reconciliation import ReconciliationResult
from doclink.services.reconciliation_service import ReconciliationService
from doclink.utils.logging import get_logger, set_log_level

LOGGER = get_logger(__name__)


async def run_reconciliation(max_items: Optional[int]) -> ReconciliationResult:
    """Run one batch with fresh sessions on both stores."""
    try:
        async with async_session_maker() as session, staging_session_maker() as staging_session:
            service = ReconciliationService(session, staging_session)
            return await service.reconcile(max_items=max_items)
    finally:
        await close_database()


async def run_init_db() -> None:
    try:
        await init_database(create_tables=True)
    finally:
        await close_database()


def print_summary(result: ReconciliationResult) -> None:
    print(
        f"Documents: {result.documents_processed} merged, {result.documents_failed} failed\n"
        f"Links:     {result.links_processed} merged, {result.links_failed} failed\n"
        f"Swept:     {result.file_paths_swept} file paths, {result.documents_swept} documents, "
        f"{result.links_swept} links\n"
        f"Pending:   {result.deferred} deferred, {result.dead_lettered} dead-lettered"
    )
    for anomaly in result.anomalies:
        print(
            f"Anomaly:   '{anomaly.title}' has {anomaly.actual} links, expected {anomaly.expected}",
            file=sys.stderr,
        )
    for error in result.errors:
        print(f"Error:     {error.kind} {error.staged_id}: {error.error}", file=sys.stderr)


def cmd_reconcile(args) -> int:
    result = asyncio.run(run_reconciliation(args.max_items))
    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print_summary(result)
    return 0


def cmd_init_db(args) -> int:
    asyncio.run(run_init_db())
    print("Database tables created")
    return 0


def cmd_serve(args) -> int:
    import uvicorn

    uvicorn.run(
        "doclink.main:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="doclink",
        description="Merge staged document pipeline output into the content store",
    )
    parser.add_argument("--log-level", help="Override LOG_LEVEL for this invocation")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    reconcile_parser = subparsers.add_parser("reconcile", help="Run one reconciliation batch")
    reconcile_parser.add_argument(
        "--max-items",
        type=int,
        default=None,
        metavar="N",
        help=f"Upper bound on documents plus links merged (default {settings.reconcile_default_max_items})",
    )
    reconcile_parser.add_argument("--json", action="store_true", help="JSON output")

    subparsers.add_parser("init-db", help="Create missing tables in both databases")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        set_log_level(args.log_level)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "reconcile":
        if args.max_items is not None and args.max_items < 0:
            parser.error("--max-items must be zero or greater")
        return cmd_reconcile(args)
    elif args.command == "init-db":
        return cmd_init_db(args)
    elif args.command == "serve":
        return cmd_serve(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
