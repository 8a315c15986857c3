"""Plain data returned by session operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from mail_archive.errors import MessageNotFoundError

if TYPE_CHECKING:
    from mail_archive.folders import FolderNode

MESSAGE_ID_DELIMITER = "::"


@dataclass(frozen=True)
class MessageSummary:
    """Compact view of a message used by list and search results."""

    id: str
    folder_id: str
    subject: str
    sender_name: str
    sender_email: str
    received_date: str
    is_read: bool
    has_attachments: bool
    preview: str


@dataclass(frozen=True)
class AttachmentInfo:
    """Attachment metadata without the binary content."""

    index: int
    filename: str
    size: int
    mime_type: str


@dataclass(frozen=True)
class MessageDetail:
    """Full view of a message: summary fields, recipients, bodies and attachments."""

    id: str
    folder_id: str
    subject: str
    sender_name: str
    sender_email: str
    received_date: str
    is_read: bool
    has_attachments: bool
    preview: str
    to_recipients: str
    cc_recipients: str
    bcc_recipients: str
    body_text: str
    body_html: str
    attachments: tuple[AttachmentInfo, ...]


@dataclass(frozen=True)
class AttachmentPayload:
    content: bytes
    filename: str
    mime_type: str


@dataclass(frozen=True)
class MessagePage:
    messages: list[MessageSummary]
    total: int


@dataclass(frozen=True)
class OpenedArchive:
    session_id: str
    folders: tuple["FolderNode", ...]


def format_message_id(folder_id: str, ordinal: int) -> str:
    return f"{folder_id}{MESSAGE_ID_DELIMITER}{ordinal}"


def parse_message_id(message_id: str) -> tuple[str, int]:
    """Split ``message_id`` into its folder id and message ordinal.

    Raises :class:`MessageNotFoundError` when the delimiter is missing or the
    ordinal is not a plain non-negative decimal number.
    """

    folder_id, delimiter, ordinal_text = message_id.rpartition(MESSAGE_ID_DELIMITER)
    if not delimiter:
        raise MessageNotFoundError(f"Message not found: {message_id}")
    if not ordinal_text.isascii() or not ordinal_text.isdigit():
        raise MessageNotFoundError(f"Message not found: {message_id}")
    return folder_id, int(ordinal_text)


__all__ = [
    "AttachmentInfo",
    "AttachmentPayload",
    "MESSAGE_ID_DELIMITER",
    "MessageDetail",
    "MessagePage",
    "MessageSummary",
    "OpenedArchive",
    "format_message_id",
    "parse_message_id",
]
