"""Tunable limits for indexing archives and caching parsed messages."""

from __future__ import annotations

from dataclasses import dataclass, fields

DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024
DEFAULT_LABEL_PREFIX_SIZE = 4096
DEFAULT_SUMMARY_PREFIX_SIZE = 16384
DEFAULT_DETAIL_CACHE_CAPACITY = 200
DEFAULT_PREVIEW_LENGTH = 200


@dataclass(frozen=True)
class ArchiveSettings:
    """Limits applied while indexing an archive and serving a session.

    Attributes:
        chunk_size: Bytes read per iteration while scanning for envelope lines.
        label_prefix_size: Bytes of each message inspected for label headers.
        summary_prefix_size: Bytes of each message decoded for list summaries.
        detail_cache_capacity: Fully decoded messages kept per session.
        preview_length: Characters of body text kept as a preview.
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    label_prefix_size: int = DEFAULT_LABEL_PREFIX_SIZE
    summary_prefix_size: int = DEFAULT_SUMMARY_PREFIX_SIZE
    detail_cache_capacity: int = DEFAULT_DETAIL_CACHE_CAPACITY
    preview_length: int = DEFAULT_PREVIEW_LENGTH

    def __post_init__(self) -> None:
        for field in fields(self):
            value = getattr(self, field.name)
            if not isinstance(value, int) or value < 1:
                raise ValueError(f"{field.name} must be a positive integer, got {value!r}")


__all__ = [
    "ArchiveSettings",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_DETAIL_CACHE_CAPACITY",
    "DEFAULT_LABEL_PREFIX_SIZE",
    "DEFAULT_PREVIEW_LENGTH",
    "DEFAULT_SUMMARY_PREFIX_SIZE",
]
