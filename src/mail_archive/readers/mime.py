"""Decoding of raw RFC 2822 messages with the standard ``email`` package."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parsedate_to_datetime
from typing import Callable, Iterator

from mail_archive.errors import MessageDecodeError

DEFAULT_ATTACHMENT_NAME = "attachment"

_LENIENT_POLICY = policy.default
_STRICT_POLICY = policy.default.clone(raise_on_defect=True)


@dataclass(frozen=True)
class Address:
    name: str
    email: str

    def display(self) -> str:
        return f"{self.name} <{self.email}>" if self.name else self.email


@dataclass(frozen=True)
class DecodedAttachment:
    filename: str
    mime_type: str
    content: bytes


@dataclass(frozen=True)
class DecodedMessage:
    """Structured form of a message as produced by :func:`decode_message`."""

    subject: str
    sender: Address
    to: tuple[Address, ...]
    cc: tuple[Address, ...]
    bcc: tuple[Address, ...]
    date: str
    text: str
    html: str
    attachments: tuple[DecodedAttachment, ...]


Decoder = Callable[..., DecodedMessage]


def decode_message(raw: bytes, *, strict: bool = False) -> DecodedMessage:
    """Decode ``raw`` into headers, bodies and attachments.

    With ``strict`` set, structural defects (for example a multipart body cut
    off before its closing boundary) are rejected instead of repaired. Any
    failure is reported as :class:`MessageDecodeError`.
    """

    parser = BytesParser(policy=_STRICT_POLICY if strict else _LENIENT_POLICY)
    try:
        message = parser.parsebytes(raw)
        return DecodedMessage(
            subject=str(message.get("subject", "")).strip(),
            sender=next(iter(_addresses(message, "from")), Address("", "")),
            to=_addresses(message, "to"),
            cc=_addresses(message, "cc"),
            bcc=_addresses(message, "bcc"),
            date=format_date(message.get("date")),
            text=_body_text(message, "plain"),
            html=_body_text(message, "html"),
            attachments=tuple(_iter_attachments(message)),
        )
    except Exception as exc:  # the stdlib header parser can fail with arbitrary errors
        raise MessageDecodeError(f"Unable to decode message: {exc}") from exc


def format_date(value: object | None) -> str:
    """Return ``value`` as an ISO 8601 UTC timestamp, or ``""`` when unparseable."""

    if not value:
        return ""
    try:
        parsed = parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        return ""
    if parsed is None:
        return ""
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def format_address_list(addresses: tuple[Address, ...]) -> str:
    return "; ".join(address.display() for address in addresses)


def _addresses(message: EmailMessage, name: str) -> tuple[Address, ...]:
    header = message.get(name)
    if header is None:
        return ()
    return tuple(
        Address(name=address.display_name or "", email=address.addr_spec or "")
        for address in getattr(header, "addresses", ())
    )


def _body_text(message: EmailMessage, subtype: str) -> str:
    part = message.get_body(preferencelist=(subtype,))
    if part is None:
        return ""
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _iter_attachments(message: EmailMessage) -> Iterator[DecodedAttachment]:
    if not message.is_multipart():
        return
    for part in message.iter_attachments():
        if part.get_content_maintype() == "multipart":
            yield from _iter_attachments(part)
            continue
        content = part.get_payload(decode=True)
        if content is None:
            content = b"".join(child.as_bytes() for child in part.iter_parts())
        yield DecodedAttachment(
            filename=part.get_filename() or DEFAULT_ATTACHMENT_NAME,
            mime_type=part.get_content_type(),
            content=content,
        )


__all__ = [
    "Address",
    "DEFAULT_ATTACHMENT_NAME",
    "DecodedAttachment",
    "DecodedMessage",
    "Decoder",
    "decode_message",
    "format_address_list",
    "format_date",
]
