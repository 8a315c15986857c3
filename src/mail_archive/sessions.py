"""In-memory browsing sessions over indexed mbox archives."""

from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Iterator, Mapping, Sequence

import structlog

from mail_archive.errors import (
    ArchiveOpenError,
    InvalidSessionError,
    MessageNotFoundError,
)
from mail_archive.folders import FolderNode, FolderTree, archive_display_name, synthesize_folders
from mail_archive.models import (
    AttachmentInfo,
    AttachmentPayload,
    MessageDetail,
    MessagePage,
    MessageSummary,
    OpenedArchive,
    format_message_id,
    parse_message_id,
)
from mail_archive.readers.headers import (
    NO_SUBJECT,
    HeaderSummary,
    extract_header_summary,
    flatten_preview,
)
from mail_archive.readers.mbox_index import MessageIndexEntry, build_index, read_range
from mail_archive.readers.mime import (
    DecodedMessage,
    Decoder,
    decode_message,
    format_address_list,
)
from mail_archive.settings import ArchiveSettings

logger = structlog.get_logger()

DEFAULT_PAGE_SIZE = 50
DEFAULT_MAX_SEARCH_RESULTS = 100


class SessionState(Enum):
    OPENING = "opening"
    READY = "ready"
    CLOSED = "closed"


@dataclass
class SessionStats:
    """Counters for prefix and full-message decodes performed by a session."""

    summaries_parsed: int = 0
    details_parsed: int = 0


class DetailCache:
    """Bounded mapping of message ordinal to decoded message.

    When full, inserting a new ordinal evicts the entry that was inserted
    first. Lookups do not change the eviction order.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be a positive integer")
        self.capacity = capacity
        self._entries: dict[int, DecodedMessage] = {}
        self._order: deque[int] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ordinal: object) -> bool:
        return ordinal in self._entries

    def get(self, ordinal: int) -> DecodedMessage | None:
        return self._entries.get(ordinal)

    def put(self, ordinal: int, message: DecodedMessage) -> int | None:
        """Store ``message`` and return the evicted ordinal, if any."""
        if ordinal in self._entries:
            self._entries[ordinal] = message
            return None
        evicted = None
        if len(self._entries) >= self.capacity:
            evicted = self._order.popleft()
            self._entries.pop(evicted, None)
        self._entries[ordinal] = message
        self._order.append(ordinal)
        return evicted

    def keys(self) -> list[int]:
        """Return cached ordinals, oldest insertion first."""
        return list(self._order)

    def clear(self) -> None:
        self._entries.clear()
        self._order.clear()


class Session:
    """Live state for one opened archive.

    The index and folder tree are fixed at construction. Summaries and decoded
    messages are produced only when a request needs them.
    """

    def __init__(
        self,
        session_id: str,
        path: Path,
        index: Sequence[MessageIndexEntry],
        tree: FolderTree,
        *,
        settings: ArchiveSettings,
        decoder: Decoder = decode_message,
    ) -> None:
        self.session_id = session_id
        self.path = path
        self.settings = settings
        self.index: tuple[MessageIndexEntry, ...] = tuple(index)
        self.folders: tuple[FolderNode, ...] = tree.folders
        self.folder_messages: Mapping[str, tuple[int, ...]] = tree.folder_messages
        self.summary_cache: dict[int, MessageSummary] = {}
        self.detail_cache = DetailCache(settings.detail_cache_capacity)
        self.loaded_counts: dict[str, int] = {}
        self.stats = SessionStats()
        self.state = SessionState.OPENING
        self._decoder = decoder

    def list_messages(
        self, folder_id: str, offset: int = 0, limit: int = DEFAULT_PAGE_SIZE
    ) -> MessagePage:
        """Return one page of summaries for ``folder_id`` plus the folder total.

        Summaries are loaded in folder order up to ``offset + limit`` and never
        beyond. Unknown folders produce an empty page.
        """

        self._ensure_ready()
        ordinals = self.folder_messages.get(folder_id)
        if ordinals is None:
            return MessagePage(messages=[], total=0)

        offset = max(offset, 0)
        limit = max(limit, 0)
        total = len(ordinals)
        end = min(offset + limit, total)
        index = self.index
        cache = self.summary_cache
        self._load_summaries(folder_id, ordinals, end, index, cache)
        # close() swaps in fresh containers, so the captured ones stay complete.
        self._ensure_ready()

        messages = [
            replace(
                cache[ordinal],
                id=format_message_id(folder_id, ordinal),
                folder_id=folder_id,
            )
            for ordinal in ordinals[offset:end]
        ]
        return MessagePage(messages=messages, total=total)

    def get_message_detail(self, message_id: str) -> MessageDetail:
        self._ensure_ready()
        folder_id, ordinal = self._resolve(message_id)
        decoded = self._decoded_message(ordinal)
        return MessageDetail(
            id=message_id,
            folder_id=folder_id,
            subject=decoded.subject or NO_SUBJECT,
            sender_name=decoded.sender.name,
            sender_email=decoded.sender.email,
            received_date=decoded.date,
            is_read=True,
            has_attachments=bool(decoded.attachments),
            preview=flatten_preview(decoded.text, self.settings.preview_length),
            to_recipients=format_address_list(decoded.to),
            cc_recipients=format_address_list(decoded.cc),
            bcc_recipients=format_address_list(decoded.bcc),
            body_text=decoded.text,
            body_html=decoded.html,
            attachments=tuple(
                AttachmentInfo(
                    index=position,
                    filename=attachment.filename,
                    size=len(attachment.content),
                    mime_type=attachment.mime_type,
                )
                for position, attachment in enumerate(decoded.attachments)
            ),
        )

    def get_attachment(self, message_id: str, attachment_index: int) -> AttachmentPayload:
        self._ensure_ready()
        _folder_id, ordinal = self._resolve(message_id)
        decoded = self._decoded_message(ordinal)
        if not 0 <= attachment_index < len(decoded.attachments):
            raise MessageNotFoundError(
                f"Attachment not found: {attachment_index} in message {message_id}"
            )
        attachment = decoded.attachments[attachment_index]
        return AttachmentPayload(
            content=attachment.content,
            filename=attachment.filename,
            mime_type=attachment.mime_type,
        )

    def search(self, query: str, max_results: int = DEFAULT_MAX_SEARCH_RESULTS) -> list[MessageSummary]:
        """Match ``query`` against summaries that are already loaded.

        Only messages that have been paged through are searched; no new
        parsing happens here.
        """

        self._ensure_ready()
        needle = query.strip().casefold()
        if not needle or max_results <= 0:
            return []

        results: list[MessageSummary] = []
        for summary in list(self.summary_cache.values()):
            if len(results) >= max_results:
                break
            haystacks = (
                summary.subject,
                summary.sender_name,
                summary.sender_email,
                summary.preview,
            )
            if any(needle in value.casefold() for value in haystacks):
                results.append(summary)
        return results

    def read_raw(self, ordinal: int) -> bytes:
        """Return the raw bytes of the message at ``ordinal``."""
        self._ensure_ready()
        if not 0 <= ordinal < len(self.index):
            raise MessageNotFoundError(f"Message not found: {ordinal}")
        entry = self.index[ordinal]
        return self._read(entry.offset, entry.length)

    def close(self) -> None:
        self.state = SessionState.CLOSED
        self.summary_cache = {}
        self.detail_cache.clear()
        self.loaded_counts = {}
        self.index = ()
        self.folder_messages = {}

    def _ensure_ready(self) -> None:
        if self.state is not SessionState.READY:
            raise InvalidSessionError(f"Invalid session: {self.session_id}")

    def _resolve(self, message_id: str) -> tuple[str, int]:
        folder_id, ordinal = parse_message_id(message_id)
        if ordinal >= len(self.index):
            raise MessageNotFoundError(f"Message not found: {message_id}")
        return folder_id, ordinal

    def _load_summaries(
        self,
        folder_id: str,
        ordinals: Sequence[int],
        needed: int,
        index: Sequence[MessageIndexEntry],
        cache: dict[int, MessageSummary],
    ) -> None:
        loaded = self.loaded_counts.get(folder_id, 0)
        if loaded >= needed:
            return
        for ordinal in ordinals[loaded:needed]:
            if ordinal in cache:
                continue
            cache[ordinal] = self._build_summary(folder_id, ordinal, index[ordinal])
        self.loaded_counts[folder_id] = max(self.loaded_counts.get(folder_id, 0), needed)

    def _build_summary(
        self, folder_id: str, ordinal: int, entry: MessageIndexEntry
    ) -> MessageSummary:
        prefix = self._read(entry.offset, min(self.settings.summary_prefix_size, entry.length))
        self.stats.summaries_parsed += 1
        try:
            header = extract_header_summary(
                prefix,
                decoder=self._decoder,
                preview_length=self.settings.preview_length,
            )
        except Exception as exc:  # placeholder keeps folder totals aligned with the index
            logger.warning(
                "summary_placeholder",
                session_id=self.session_id,
                ordinal=ordinal,
                error=str(exc),
            )
            header = HeaderSummary()

        return MessageSummary(
            id=format_message_id(folder_id, ordinal),
            folder_id=folder_id,
            subject=header.subject,
            sender_name=header.sender_name,
            sender_email=header.sender_email,
            received_date=header.date,
            is_read=True,
            has_attachments=header.has_attachments,
            preview=header.preview,
        )

    def _decoded_message(self, ordinal: int) -> DecodedMessage:
        cached = self.detail_cache.get(ordinal)
        if cached is not None:
            return cached

        entry = self.index[ordinal]
        raw = self._read(entry.offset, entry.length)
        self.stats.details_parsed += 1
        decoded = self._decoder(raw)
        evicted = self.detail_cache.put(ordinal, decoded)
        if evicted is not None:
            logger.debug(
                "detail_cache_evicted",
                session_id=self.session_id,
                ordinal=evicted,
                capacity=self.detail_cache.capacity,
            )
        return decoded

    def _read(self, offset: int, length: int) -> bytes:
        with self.path.open("rb") as handle:
            return read_range(handle, offset, length)


class SessionRegistry:
    """Owns every open session and routes operations to them by id."""

    def __init__(
        self,
        settings: ArchiveSettings | None = None,
        *,
        decoder: Decoder = decode_message,
    ) -> None:
        self.settings = settings or ArchiveSettings()
        self._decoder = decoder
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def session_ids(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._sessions))

    def open_archive(
        self,
        path: Path,
        *,
        original_name: str | None = None,
        show_progress: bool = False,
    ) -> OpenedArchive:
        """Index ``path`` and register a new session for it.

        Raises :class:`ArchiveOpenError` when the archive cannot be read; in
        that case no session is registered.
        """

        path = Path(path)
        if not path.is_file():
            raise ArchiveOpenError(f"Archive not found: {path}")
        try:
            index = build_index(path, settings=self.settings, show_progress=show_progress)
        except OSError as exc:
            raise ArchiveOpenError(f"Unable to index archive {path}: {exc}") from exc

        tree = synthesize_folders(index, archive_display_name(path, original_name))
        session = Session(
            uuid.uuid4().hex,
            path,
            index,
            tree,
            settings=self.settings,
            decoder=self._decoder,
        )
        session.state = SessionState.READY
        with self._lock:
            self._sessions[session.session_id] = session

        logger.info(
            "archive_opened",
            session_id=session.session_id,
            path=str(path),
            messages=len(index),
            folders=len(tree.folder_messages),
        )
        return OpenedArchive(session_id=session.session_id, folders=tree.folders)

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise InvalidSessionError(f"Invalid session: {session_id}")
        return session

    def list_messages(
        self,
        session_id: str,
        folder_id: str,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> MessagePage:
        return self.get_session(session_id).list_messages(folder_id, offset, limit)

    def get_message_detail(self, session_id: str, message_id: str) -> MessageDetail:
        return self.get_session(session_id).get_message_detail(message_id)

    def get_attachment(
        self, session_id: str, message_id: str, attachment_index: int
    ) -> AttachmentPayload:
        return self.get_session(session_id).get_attachment(message_id, attachment_index)

    def search(
        self,
        session_id: str,
        query: str,
        max_results: int = DEFAULT_MAX_SEARCH_RESULTS,
    ) -> list[MessageSummary]:
        return self.get_session(session_id).search(query, max_results)

    def close_session(self, session_id: str) -> None:
        """Release ``session_id``; closing an unknown or closed id does nothing."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return
        session.close()
        logger.info("session_closed", session_id=session_id)

    def close_all(self) -> None:
        for session_id in list(self.session_ids()):
            self.close_session(session_id)


__all__ = [
    "DEFAULT_MAX_SEARCH_RESULTS",
    "DEFAULT_PAGE_SIZE",
    "DetailCache",
    "Session",
    "SessionRegistry",
    "SessionState",
    "SessionStats",
]
