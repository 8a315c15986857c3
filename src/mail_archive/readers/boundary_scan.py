"""Streaming detection of envelope lines inside large mbox archives."""

from __future__ import annotations

from pathlib import Path

from tqdm import tqdm

from mail_archive.settings import DEFAULT_CHUNK_SIZE

ENVELOPE_MARKER = b"From "
_SEARCH_PATTERN = b"\n" + ENVELOPE_MARKER
_CARRY_SIZE = len(_SEARCH_PATTERN) - 1


def scan_boundaries(
    path: Path,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    show_progress: bool = False,
) -> list[int]:
    """Return the absolute offset of every envelope line in ``path``.

    An envelope line starts with ``From `` either at offset 0 or directly after
    a ``\\n``. The archive is read ``chunk_size`` bytes at a time; the tail of
    each searched buffer is carried into the next one so markers split across
    chunk edges are found exactly once. The returned offsets do not depend on
    ``chunk_size``.
    """

    if chunk_size < 1:
        raise ValueError("chunk_size must be a positive integer")

    file_size = path.stat().st_size
    progress = tqdm(
        total=file_size,
        disable=not show_progress,
        unit="B",
        unit_scale=True,
        desc="Indexing Archive",
    )

    offsets: list[int] = []
    # The start of the file behaves as if it followed a line terminator.
    carry = b"\n"
    position = 0
    try:
        with path.open("rb") as handle:
            while True:
                chunk = handle.read(chunk_size)
                if not chunk:
                    break

                buffer = carry + chunk
                buffer_start = position - len(carry)
                search_from = 0
                while True:
                    match = buffer.find(_SEARCH_PATTERN, search_from)
                    if match == -1:
                        break
                    offsets.append(buffer_start + match + 1)
                    search_from = match + len(_SEARCH_PATTERN)

                carry = buffer[-_CARRY_SIZE:]
                position += len(chunk)
                progress.update(len(chunk))
    finally:
        progress.close()

    return offsets


__all__ = ["ENVELOPE_MARKER", "scan_boundaries"]
