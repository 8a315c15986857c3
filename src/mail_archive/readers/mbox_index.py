"""Byte-range index of the messages stored in an mbox archive."""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Sequence

import structlog

from mail_archive.readers.boundary_scan import scan_boundaries
from mail_archive.readers.headers import split_header_block
from mail_archive.settings import ArchiveSettings

logger = structlog.get_logger()

LABEL_HEADER = "X-Gmail-Labels"

_LABEL_PATTERN = re.compile(
    rf"^{re.escape(LABEL_HEADER)}:[ \t]*(.*(?:\r?\n[ \t]+.*)*)",
    re.IGNORECASE | re.MULTILINE,
)
_FOLD_PATTERN = re.compile(r"\r?\n[ \t]+")
_LINE_SCAN_BLOCK = 4096


@dataclass(frozen=True)
class MessageIndexEntry:
    """Location of one message body inside the archive.

    ``offset`` is the first byte after the envelope line and ``length`` stops
    before the line terminator that separates the message from the next
    envelope line (or ends the file).
    """

    offset: int
    length: int
    labels: tuple[str, ...] = ()


def build_index(
    path: Path,
    *,
    settings: ArchiveSettings | None = None,
    show_progress: bool = False,
) -> list[MessageIndexEntry]:
    """Scan ``path`` and return one index entry per non-empty message, in file order."""

    settings = settings or ArchiveSettings()
    started = time.monotonic()
    boundaries = scan_boundaries(
        path,
        chunk_size=settings.chunk_size,
        show_progress=show_progress,
    )
    file_size = path.stat().st_size

    entries: list[MessageIndexEntry] = []
    with path.open("rb") as handle:
        for position, envelope_offset in enumerate(boundaries):
            body_start = _find_line_end(handle, envelope_offset, file_size) + 1
            if position + 1 < len(boundaries):
                next_boundary = boundaries[position + 1]
            else:
                next_boundary = file_size
            body_end = _strip_trailing_terminator(handle, body_start, next_boundary)
            length = body_end - body_start
            if length <= 0:
                continue

            prefix = read_range(handle, body_start, min(settings.label_prefix_size, length))
            labels = extract_labels(prefix.decode("utf-8", errors="replace"))
            entries.append(MessageIndexEntry(offset=body_start, length=length, labels=tuple(labels)))

    logger.info(
        "mbox_index_built",
        path=str(path),
        messages=len(entries),
        envelopes=len(boundaries),
        elapsed=round(time.monotonic() - started, 3),
    )
    return entries


def read_range(handle: BinaryIO, offset: int, length: int) -> bytes:
    """Read exactly ``length`` bytes starting at ``offset``."""

    handle.seek(offset)
    data = handle.read(length)
    if len(data) != length:
        raise OSError(f"Short read at offset {offset}: expected {length} bytes, got {len(data)}")
    return data


def extract_labels(text: str) -> list[str]:
    """Return the labels listed in the ``X-Gmail-Labels`` header of ``text``.

    Only the header block (up to the first blank line) is inspected. Folded
    continuation lines are joined with a single space before splitting.
    """

    headers, _body = split_header_block(text)
    match = _LABEL_PATTERN.search(headers)
    if match is None:
        return []
    value = _FOLD_PATTERN.sub(" ", match.group(1)).strip()
    if not value:
        return []
    return split_label_value(value)


def split_label_value(value: str) -> list[str]:
    """Split a comma separated label list, keeping commas inside double quotes."""

    labels: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in value:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            label = "".join(current).strip()
            if label:
                labels.append(label)
            current = []
        else:
            current.append(char)
    label = "".join(current).strip()
    if label:
        labels.append(label)
    return labels


def report_to_dict(index: Sequence[MessageIndexEntry], archive: Path) -> dict:
    timestamp = datetime.now(timezone.utc).isoformat()
    labels = {label for entry in index for label in entry.labels}
    return {
        "generated_at": timestamp,
        "archive": str(archive),
        "summary": {
            "total_messages": len(index),
            "total_bytes": sum(entry.length for entry in index),
            "labelled_messages": sum(1 for entry in index if entry.labels),
            "distinct_labels": len(labels),
        },
        "messages": [
            {
                "ordinal": ordinal,
                "offset": entry.offset,
                "length": entry.length,
                "labels": list(entry.labels),
            }
            for ordinal, entry in enumerate(index)
        ],
    }


def write_report(report_path: Path, index: Sequence[MessageIndexEntry], archive: Path) -> None:
    """Serialize the byte index of ``archive`` to ``report_path`` as JSON."""

    report_path.parent.mkdir(parents=True, exist_ok=True)
    data = report_to_dict(index, archive)
    report_path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _find_line_end(handle: BinaryIO, start: int, file_size: int) -> int:
    """Return the offset of the first ``\\n`` at or after ``start`` (``file_size - 1`` if none)."""

    position = start
    handle.seek(position)
    while position < file_size:
        block = handle.read(min(_LINE_SCAN_BLOCK, file_size - position))
        if not block:
            break
        newline = block.find(b"\n")
        if newline != -1:
            return position + newline
        position += len(block)
    return file_size - 1


def _strip_trailing_terminator(handle: BinaryIO, start: int, end: int) -> int:
    span = min(2, end - start)
    if span <= 0:
        return end
    tail = read_range(handle, end - span, span)
    if tail.endswith(b"\r\n"):
        return end - 2
    if tail.endswith(b"\n"):
        return end - 1
    return end


__all__ = [
    "LABEL_HEADER",
    "MessageIndexEntry",
    "build_index",
    "extract_labels",
    "read_range",
    "report_to_dict",
    "split_label_value",
    "write_report",
]
