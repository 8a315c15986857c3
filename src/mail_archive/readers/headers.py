"""Summary extraction from the first few kilobytes of a message."""

from __future__ import annotations

import re
from dataclasses import dataclass
from email.errors import HeaderParseError
from email.header import decode_header, make_header

import structlog

from mail_archive.errors import MessageDecodeError
from mail_archive.readers.mime import Decoder, decode_message, format_date
from mail_archive.settings import DEFAULT_PREVIEW_LENGTH

logger = structlog.get_logger()

NO_SUBJECT = "(No Subject)"

_FALLBACK_HEADER_LIMIT = 2000
_PREVIEW_SCAN_LIMIT = 300
_FOLD_PATTERN = re.compile(r"\r?\n[ \t]+")
_NEWLINE_PATTERN = re.compile(r"\r?\n")
_LEADING_BLANK_LINE = re.compile(r"^\r?\n\r?\n")
_FROM_PATTERN = re.compile(r'^"?([^"<]*?)"?\s*<([^>]+)>')
_BOUNDARY_LINE = re.compile(r"^--[^\n]*\n", re.MULTILINE)
_CONTENT_LINE = re.compile(r"^Content-[^\n]*\n", re.MULTILINE)
_LEADING_SPACE = re.compile(r"^\s+", re.MULTILINE)


@dataclass(frozen=True)
class HeaderSummary:
    subject: str = NO_SUBJECT
    sender_name: str = ""
    sender_email: str = ""
    date: str = ""
    preview: str = ""
    has_attachments: bool = False


def extract_header_summary(
    prefix: bytes,
    *,
    decoder: Decoder = decode_message,
    preview_length: int = DEFAULT_PREVIEW_LENGTH,
) -> HeaderSummary:
    """Summarise a message from a truncated ``prefix`` of its bytes.

    The decoder runs first in strict mode. Truncation often leaves a MIME
    structure unterminated, in which case the decoder refuses the input and
    the regex based :func:`extract_headers_fallback` is used instead.
    """

    try:
        decoded = decoder(prefix, strict=True)
    except MessageDecodeError as exc:
        logger.debug("header_decode_fallback", error=str(exc))
        return extract_headers_fallback(prefix, preview_length=preview_length)

    return HeaderSummary(
        subject=decoded.subject or NO_SUBJECT,
        sender_name=decoded.sender.name,
        sender_email=decoded.sender.email,
        date=decoded.date,
        preview=flatten_preview(decoded.text, preview_length),
        has_attachments=bool(decoded.attachments),
    )


def extract_headers_fallback(
    prefix: bytes, *, preview_length: int = DEFAULT_PREVIEW_LENGTH
) -> HeaderSummary:
    """Pull summary fields out of ``prefix`` with per-header regular expressions."""

    raw = prefix.decode("utf-8", errors="replace")
    headers, body = split_header_block(raw)
    if not headers or headers == raw:
        # Either no blank line at all or one at the very start.
        headers, body = raw[:_FALLBACK_HEADER_LIMIT], ""

    subject = _decode_words(_header_value(headers, "Subject")) or NO_SUBJECT
    from_raw = _header_value(headers, "From")
    content_type = _header_value(headers, "Content-Type")

    sender_name = ""
    sender_email = ""
    match = _FROM_PATTERN.match(from_raw)
    if match:
        sender_name = _decode_words(match.group(1).strip())
        sender_email = match.group(2).strip()
    elif "@" in from_raw:
        sender_email = from_raw.strip()

    preview = _BOUNDARY_LINE.sub("", body)
    preview = _CONTENT_LINE.sub("", preview)
    preview = _LEADING_SPACE.sub(" ", preview)[:_PREVIEW_SCAN_LIMIT]
    preview = _NEWLINE_PATTERN.sub(" ", preview).strip()[:preview_length]

    has_attachments = (
        "mixed" in content_type.lower() or "Content-Disposition: attachment" in raw
    )

    return HeaderSummary(
        subject=subject,
        sender_name=sender_name,
        sender_email=sender_email,
        date=format_date(_header_value(headers, "Date")),
        preview=preview,
        has_attachments=has_attachments,
    )


def split_header_block(text: str) -> tuple[str, str]:
    """Split ``text`` at its first blank line into ``(headers, body)``."""

    candidates = [index for index in (text.find("\r\n\r\n"), text.find("\n\n")) if index != -1]
    if not candidates:
        return text, ""
    end = min(candidates)
    return text[:end], _LEADING_BLANK_LINE.sub("", text[end:])


def flatten_preview(text: str, length: int = DEFAULT_PREVIEW_LENGTH) -> str:
    return _NEWLINE_PATTERN.sub(" ", text[:length]).strip()


def _header_value(headers: str, name: str) -> str:
    pattern = re.compile(
        rf"^{re.escape(name)}:[ \t]*(.*(?:\r?\n[ \t]+.*)*)",
        re.IGNORECASE | re.MULTILINE,
    )
    match = pattern.search(headers)
    if match is None:
        return ""
    return _FOLD_PATTERN.sub(" ", match.group(1)).strip()


def _decode_words(value: str) -> str:
    if "=?" not in value:
        return value
    try:
        return str(make_header(decode_header(value)))
    except (HeaderParseError, LookupError, UnicodeError):
        return value


__all__ = [
    "HeaderSummary",
    "NO_SUBJECT",
    "extract_header_summary",
    "extract_headers_fallback",
    "flatten_preview",
    "split_header_block",
]
