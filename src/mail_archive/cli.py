"""Command-line interface for browsing mbox archives."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable

import structlog

from mail_archive.errors import MailArchiveError
from mail_archive.folders import FolderNode
from mail_archive.readers import mbox_index
from mail_archive.sessions import DEFAULT_MAX_SEARCH_RESULTS, DEFAULT_PAGE_SIZE, SessionRegistry
from mail_archive.settings import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_DETAIL_CACHE_CAPACITY,
    ArchiveSettings,
)

_SIZE_UNITS = ("B", "KB", "MB", "GB")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mail-archive",
        description="Index large mbox archives and browse their folders, messages and attachments.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    folders_parser = subparsers.add_parser(
        "folders",
        help="Show the folder tree derived from the archive and per-folder message counts.",
    )
    _add_archive_argument(folders_parser)
    folders_parser.set_defaults(handler=_handle_folders)

    list_parser = subparsers.add_parser(
        "list",
        help="List one page of message summaries in a folder.",
    )
    _add_archive_argument(list_parser)
    list_parser.add_argument("folder", help="Folder id as shown by the 'folders' command.")
    list_parser.add_argument(
        "--offset",
        type=_non_negative_int,
        default=0,
        help="Number of messages to skip before the page starts.",
    )
    list_parser.add_argument(
        "--limit",
        type=_non_negative_int,
        default=DEFAULT_PAGE_SIZE,
        help=f"Maximum number of messages to show (default: {DEFAULT_PAGE_SIZE}).",
    )
    list_parser.set_defaults(handler=_handle_list)

    show_parser = subparsers.add_parser(
        "show",
        help="Show the headers, body and attachments of a single message.",
    )
    _add_archive_argument(show_parser)
    show_parser.add_argument("message_id", help="Message id as shown by the 'list' command.")
    show_parser.add_argument(
        "--html",
        action="store_true",
        help="Print the HTML body instead of the plain text body.",
    )
    show_parser.set_defaults(handler=_handle_show)

    attachment_parser = subparsers.add_parser(
        "attachment",
        help="Save one attachment of a message to disk.",
    )
    _add_archive_argument(attachment_parser)
    attachment_parser.add_argument("message_id", help="Message id as shown by the 'list' command.")
    attachment_parser.add_argument(
        "index",
        type=_non_negative_int,
        help="Zero-based attachment index as shown by the 'show' command.",
    )
    attachment_parser.add_argument(
        "--output",
        type=Path,
        help="File or directory to write to (default: the attachment filename in the current directory).",
    )
    attachment_parser.set_defaults(handler=_handle_attachment)

    search_parser = subparsers.add_parser(
        "search",
        help="Search subjects, senders and previews of messages in the archive.",
    )
    _add_archive_argument(search_parser)
    search_parser.add_argument("query", help="Case-insensitive text to look for.")
    search_parser.add_argument(
        "--folder",
        help="Only load and search summaries from this folder id.",
    )
    search_parser.add_argument(
        "--max-results",
        type=_non_negative_int,
        default=DEFAULT_MAX_SEARCH_RESULTS,
        help=f"Maximum number of matches to show (default: {DEFAULT_MAX_SEARCH_RESULTS}).",
    )
    search_parser.set_defaults(handler=_handle_search)

    index_parser = subparsers.add_parser(
        "index",
        help="Build the byte-offset index of an archive and optionally write it as JSON.",
    )
    _add_archive_argument(index_parser)
    index_parser.add_argument(
        "--report",
        type=Path,
        help="Optional path to write a JSON report with the offset, length and labels of every message.",
    )
    index_parser.set_defaults(handler=_handle_index)

    return parser


Handler = Callable[[argparse.Namespace, SessionRegistry], int]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)

    args.archive = args.archive.resolve()
    if args.command == "attachment" and args.output is not None:
        args.output = args.output.resolve()
    elif args.command == "index" and args.report is not None:
        args.report = args.report.resolve()

    return args


def configure_logging(*, verbose: bool = False) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.WARNING
        ),
        logger_factory=_stderr_logger,
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(verbose=args.verbose)

    settings = ArchiveSettings(
        chunk_size=args.chunk_size,
        detail_cache_capacity=args.detail_cache_size,
    )
    registry = SessionRegistry(settings)
    handler: Handler = args.handler
    try:
        return handler(args, registry)
    except MailArchiveError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        registry.close_all()


def format_file_size(size: int) -> str:
    """Return ``size`` in bytes as a short human readable string."""

    if size <= 0:
        return "0 B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    if unit == 0:
        return f"{size} B"
    return f"{value:.1f} {_SIZE_UNITS[unit]}"


def _add_archive_argument(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument(
        "archive",
        type=Path,
        help="Path to the mbox archive to open.",
    )
    subparser.add_argument(
        "--chunk-size",
        type=_positive_int,
        default=DEFAULT_CHUNK_SIZE,
        help="Bytes read per step while scanning the archive for message boundaries.",
    )
    subparser.add_argument(
        "--detail-cache-size",
        type=_positive_int,
        default=DEFAULT_DETAIL_CACHE_CAPACITY,
        help="Number of fully decoded messages kept in memory.",
    )
    subparser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable the progress bar output while indexing.",
    )
    subparser.add_argument(
        "--verbose",
        action="store_true",
        help="Increase logging verbosity for troubleshooting.",
    )


def _positive_int(value: str) -> int:
    number = _non_negative_int(value)
    if number == 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return number


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number < 0:
        raise argparse.ArgumentTypeError("must not be negative")
    return number


def _stderr_logger(*_args: object) -> structlog.PrintLogger:
    # Resolved per call so redirected streams are honoured.
    return structlog.PrintLogger(sys.stderr)


def _open(args: argparse.Namespace, registry: SessionRegistry) -> str:
    opened = registry.open_archive(args.archive, show_progress=not args.no_progress)
    return opened.session_id


def _handle_folders(args: argparse.Namespace, registry: SessionRegistry) -> int:
    session = registry.get_session(_open(args, registry))

    rows: list[tuple[str, FolderNode]] = []

    def collect(nodes: tuple[FolderNode, ...], depth: int) -> None:
        for node in nodes:
            rows.append(("  " * depth + node.name, node))
            collect(node.children, depth + 1)

    collect(session.folders, 0)
    if not rows:  # pragma: no cover - every archive yields at least one folder
        print(f"No folders found in {args.archive}")
        return 0

    name_width = max(len(label) for label, _node in rows)
    print(f"Folders in {args.archive} ({len(session.index)} messages):")
    header = f"  {'Name'.ljust(name_width)}  {'Messages':>8}  Id"
    print(header)
    print("  " + "-" * (len(header) - 2))
    for label, node in rows:
        print(f"  {label.ljust(name_width)}  {node.message_count:8d}  {node.id}")
    return 0


def _handle_list(args: argparse.Namespace, registry: SessionRegistry) -> int:
    session_id = _open(args, registry)
    page = registry.list_messages(session_id, args.folder, args.offset, args.limit)
    if not page.messages:
        print(f"No messages found in folder {args.folder!r} (total {page.total}).")
        return 0

    first = args.offset + 1
    last = args.offset + len(page.messages)
    print(f"Messages {first}-{last} of {page.total} in {args.folder}:")
    id_width = max(len(summary.id) for summary in page.messages)
    for summary in page.messages:
        sender = summary.sender_name or summary.sender_email or "(unknown sender)"
        marker = "@" if summary.has_attachments else " "
        print(
            f"  {summary.id.ljust(id_width)}  {summary.received_date[:10]:10}  "
            f"{marker} {sender[:30]:30}  {summary.subject}"
        )
    return 0


def _handle_show(args: argparse.Namespace, registry: SessionRegistry) -> int:
    session_id = _open(args, registry)
    detail = registry.get_message_detail(session_id, args.message_id)

    sender = (
        f"{detail.sender_name} <{detail.sender_email}>" if detail.sender_name else detail.sender_email
    )
    print(f"Subject: {detail.subject}")
    print(f"From: {sender}")
    if detail.to_recipients:
        print(f"To: {detail.to_recipients}")
    if detail.cc_recipients:
        print(f"Cc: {detail.cc_recipients}")
    if detail.bcc_recipients:
        print(f"Bcc: {detail.bcc_recipients}")
    if detail.received_date:
        print(f"Date: {detail.received_date}")
    print()
    print(detail.body_html if args.html else detail.body_text)

    if detail.attachments:
        print("Attachments:")
        for attachment in detail.attachments:
            print(
                f"  [{attachment.index}] {attachment.filename}  "
                f"{format_file_size(attachment.size)}  {attachment.mime_type}"
            )
    return 0


def _handle_attachment(args: argparse.Namespace, registry: SessionRegistry) -> int:
    session_id = _open(args, registry)
    payload = registry.get_attachment(session_id, args.message_id, args.index)

    filename = Path(payload.filename).name or "attachment"
    target: Path = args.output if args.output is not None else Path.cwd() / filename
    if target.is_dir():
        target = target / filename
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(payload.content)
    print(f"Saved {filename} ({format_file_size(len(payload.content))}) to {target}")
    return 0


def _handle_search(args: argparse.Namespace, registry: SessionRegistry) -> int:
    session_id = _open(args, registry)
    session = registry.get_session(session_id)

    # Search only covers summaries that are already loaded, so page through first.
    folder_ids = [args.folder] if args.folder is not None else list(session.folder_messages)
    for folder_id in folder_ids:
        total = len(session.folder_messages.get(folder_id, ()))
        registry.list_messages(session_id, folder_id, 0, total)

    results = registry.search(session_id, args.query, args.max_results)
    print(f"Search complete: {len(results)} matches for {args.query!r}.")
    for summary in results:
        sender = summary.sender_name or summary.sender_email
        print(f"  {summary.id}  {sender}  {summary.subject}")
    return 0


def _handle_index(args: argparse.Namespace, registry: SessionRegistry) -> int:
    session = registry.get_session(_open(args, registry))
    total_bytes = sum(entry.length for entry in session.index)
    labelled = sum(1 for entry in session.index if entry.labels)
    print(
        "Index complete: "
        f"{len(session.index)} messages, {format_file_size(total_bytes)} of message data, "
        f"{labelled} labelled."
    )

    if args.report is not None:
        mbox_index.write_report(args.report, session.index, args.archive)
        print(f"Report written to {args.report}")

    return 0


if __name__ == "__main__":  # pragma: no cover - manual execution entry point
    raise SystemExit(main())
