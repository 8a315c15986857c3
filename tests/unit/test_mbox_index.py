"""Tests for building the byte-range message index."""

import json
from pathlib import Path

import pytest

from mail_archive.readers import mbox_index
from mail_archive.settings import ArchiveSettings

ENVELOPE = "From sender@example.com Mon Jan  1 12:00:00 2001\n"


def _write_mbox(path: Path, bodies: list[str]) -> bytes:
    data = "".join(f"{ENVELOPE}{body}\n" for body in bodies).encode("utf-8")
    path.write_bytes(data)
    return data


BODIES = [
    "X-Gmail-Labels: Inbox,Important\nSubject: first\n\nHello\n",
    "Subject: second\n\nNo labels here\n\n",
    'X-Gmail-Labels: "Family, Trips",Inbox\nSubject: third\n\nSee you\n',
]


def test_index_ranges_reconstruct_message_bodies(tmp_path: Path) -> None:
    archive = tmp_path / "archive.mbox"
    data = _write_mbox(archive, BODIES)

    index = mbox_index.build_index(archive)

    assert [data[e.offset : e.offset + e.length].decode("utf-8") for e in index] == BODIES
    envelope_bytes = len(ENVELOPE) * len(BODIES)
    trailing_terminators = len(BODIES)
    assert sum(e.length for e in index) == len(data) - envelope_bytes - trailing_terminators


def test_index_entries_are_ordered_and_non_overlapping(tmp_path: Path) -> None:
    archive = tmp_path / "archive.mbox"
    _write_mbox(archive, BODIES * 3)

    index = mbox_index.build_index(archive)

    assert len(index) == 9
    for previous, current in zip(index, index[1:]):
        assert previous.offset + previous.length < current.offset
    assert all(entry.length > 0 for entry in index)


@pytest.mark.parametrize("chunk_size", [1, 5, 6, 7, 33])
def test_index_is_independent_of_chunk_size(tmp_path: Path, chunk_size: int) -> None:
    archive = tmp_path / "archive.mbox"
    _write_mbox(archive, BODIES * 2)

    reference = mbox_index.build_index(archive)
    chunked = mbox_index.build_index(archive, settings=ArchiveSettings(chunk_size=chunk_size))

    assert chunked == reference


def test_index_extracts_labels(tmp_path: Path) -> None:
    archive = tmp_path / "archive.mbox"
    _write_mbox(archive, BODIES)

    index = mbox_index.build_index(archive)

    assert index[0].labels == ("Inbox", "Important")
    assert index[1].labels == ()
    assert index[2].labels == ("Family, Trips", "Inbox")


def test_index_drops_zero_length_messages(tmp_path: Path) -> None:
    archive = tmp_path / "archive.mbox"
    archive.write_bytes(b"From a\n\nFrom b\nSubject: kept\n\nbody\n")

    index = mbox_index.build_index(archive)

    assert len(index) == 1
    data = archive.read_bytes()
    assert data[index[0].offset : index[0].offset + index[0].length] == b"Subject: kept\n\nbody"


def test_index_strips_crlf_terminators(tmp_path: Path) -> None:
    archive = tmp_path / "archive.mbox"
    data = (
        b"From a\r\nSubject: x\r\n\r\nbody\r\n\r\n"
        b"From b\r\nSubject: y\r\n\r\nbody2\r\n"
    )
    archive.write_bytes(data)

    index = mbox_index.build_index(archive)

    ranges = [data[e.offset : e.offset + e.length] for e in index]
    assert ranges == [b"Subject: x\r\n\r\nbody\r\n", b"Subject: y\r\n\r\nbody2"]


def test_index_of_archive_without_envelopes_is_empty(tmp_path: Path) -> None:
    archive = tmp_path / "archive.mbox"
    archive.write_bytes(b"Subject: stray\n\nno envelope line\n")

    assert mbox_index.build_index(archive) == []


def test_index_ignores_trailing_envelope_without_body(tmp_path: Path) -> None:
    archive = tmp_path / "archive.mbox"
    archive.write_bytes(b"From a\nSubject: x\n\nbody\n\nFrom b")

    index = mbox_index.build_index(archive)

    assert len(index) == 1


def test_extract_labels_joins_folded_lines() -> None:
    headers = "Subject: x\r\nX-Gmail-Labels: Inbox,\r\n Work/Projects,\r\n\t\"A, B\"\r\nFrom: a@b\r\n\r\nbody"

    assert mbox_index.extract_labels(headers) == ["Inbox", "Work/Projects", "A, B"]


def test_extract_labels_is_case_insensitive_and_header_only() -> None:
    assert mbox_index.extract_labels("x-gmail-labels: Sent\n\nbody") == ["Sent"]
    assert mbox_index.extract_labels("Subject: x\n\nX-Gmail-Labels: Inbox\n") == []
    assert mbox_index.extract_labels("X-Gmail-Labels:\nSubject: x\n\n") == []


def test_split_label_value_respects_quotes() -> None:
    assert mbox_index.split_label_value('Inbox, "Family, Trips" ,,Starred') == [
        "Inbox",
        "Family, Trips",
        "Starred",
    ]


def test_write_report_serializes_index(tmp_path: Path) -> None:
    archive = tmp_path / "archive.mbox"
    _write_mbox(archive, BODIES)
    index = mbox_index.build_index(archive)

    report_path = tmp_path / "reports" / "index.json"
    mbox_index.write_report(report_path, index, archive)

    data = json.loads(report_path.read_text())
    assert data["summary"]["total_messages"] == 3
    assert data["summary"]["labelled_messages"] == 2
    assert data["summary"]["distinct_labels"] == 3
    assert data["messages"][2]["labels"] == ["Family, Trips", "Inbox"]
    assert data["messages"][0]["offset"] == index[0].offset
