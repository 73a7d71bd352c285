from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime
from signal import SIGINT, signal
from typing import TYPE_CHECKING

import uvicorn
from dotenv import load_dotenv

from sanflow.app import sync_single_item, sync_site
from sanflow.common.logging import configure_logging
from sanflow.domain.catalog import artworks_of_creators
from sanflow.domain.scheduler import RunOptions

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronise Sanity content into Webflow")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging (including HTTP client logs)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Reconcile every collection (or one of them)")
    sync.add_argument(
        "--only",
        type=str,
        help="Collection key or display name to restrict the run to",
    )
    sync.add_argument(
        "--limit",
        type=int,
        help="Maximum number of source records per collection (disables orphan deletion)",
    )
    window = sync.add_mutually_exclusive_group()
    window.add_argument(
        "--since",
        type=str,
        help="ISO-8601 timestamp; only records updated afterwards are synced",
    )
    window.add_argument(
        "--incremental",
        action="store_true",
        help="Only sync records updated since each collection's last clean run",
    )
    sync.add_argument(
        "--artworks-for-creators",
        type=str,
        metavar="IDS",
        help="Comma-separated creator ids; resync their artworks and relink creator works",
    )
    sync.add_argument(
        "--force",
        action="store_true",
        help="Update every existing item regardless of the hash ledger",
    )
    sync.add_argument(
        "--no-publish",
        action="store_true",
        help="Leave created and updated items unpublished",
    )
    sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Report the planned operations without writing anything",
    )
    sync.add_argument(
        "--primary-only",
        action="store_true",
        help="Skip the secondary locale",
    )

    item = subparsers.add_parser("item", help="Synchronise a single Sanity document")
    item.add_argument("document_id", type=str, help="Sanity document id (drafts. prefix allowed)")
    item.add_argument("document_type", type=str, help="Sanity document type, e.g. artwork")
    item.add_argument(
        "--force",
        action="store_true",
        help="Update the item even when its hash is unchanged",
    )
    item.add_argument(
        "--no-publish",
        action="store_true",
        help="Leave the item unpublished",
    )

    serve = subparsers.add_parser("serve", help="Serve the HTTP sync endpoint")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Bind address")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: %(default)s)")

    return parser.parse_args(list(argv))


def _parse_iso_datetime(value: str) -> datetime:
    try:
        normalized = value.strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        dt = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Invalid ISO timestamp: {value}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _build_run_options(args: argparse.Namespace) -> RunOptions:
    if args.limit is not None and args.limit < 1:
        raise ValueError("Limit must be a positive integer")
    since = None
    if args.since:
        since = _parse_iso_datetime(args.since).isoformat().replace("+00:00", "Z")
    only = args.only
    referencing = None
    if args.artworks_for_creators is not None:
        if only is not None:
            raise ValueError("--artworks-for-creators cannot be combined with --only")
        only, referencing = artworks_of_creators(args.artworks_for_creators.split(","))
    return RunOptions(
        only=only,
        limit=args.limit,
        since=since,
        incremental=args.incremental,
        referencing=referencing,
        force=args.force,
        publish=not args.no_publish,
        dry_run=args.dry_run,
        primary_only=args.primary_only,
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args: argparse.Namespace
    options: RunOptions | None = None
    try:
        parsed_args = _parse_args(args_list)
        if parsed_args.command == "sync":
            options = _build_run_options(parsed_args)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        if parsed_args.command == "sync" and options is not None:
            result = sync_site(options)
            log.info(
                "Sync finished: synced=%s, created=%s, updated=%s, unchanged=%s, deleted=%s, "
                "errors=%s, duration=%.1fs",
                result.total_synced,
                result.created,
                result.updated,
                result.unchanged,
                result.deleted,
                len(result.errors),
                result.duration,
            )
        elif parsed_args.command == "item":
            item = sync_single_item(
                parsed_args.document_id,
                parsed_args.document_type,
                force=parsed_args.force,
                publish=not parsed_args.no_publish,
            )
            log.info(
                "Synced %s (%s) to Webflow item %s",
                item.document_id,
                item.document_type,
                item.webflow_id,
            )
        elif parsed_args.command == "serve":
            uvicorn.run(
                "sanflow.ui.http:app",
                host=parsed_args.host,
                port=parsed_args.port,
                log_config=None,
            )
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301

    except Exception:
        log.exception("Fatal error during sync")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
