"""Tests for the mail archive CLI argument parsing and commands."""

import json
from email.message import EmailMessage
from pathlib import Path

import pytest

from mail_archive import cli

ENVELOPE = b"From sender@example.com Mon Jan  1 12:00:00 2001\n"


def _text_message(subject: str, labels: str) -> bytes:
    return (
        f"X-Gmail-Labels: {labels}\n"
        "From: Alice Example <alice@example.com>\n"
        f"Subject: {subject}\n"
        "Date: Mon, 01 Jan 2001 12:00:00 +0000\n"
        "\n"
        f"Body of {subject}\n"
    ).encode("utf-8")


def _attachment_message() -> bytes:
    message = EmailMessage()
    message["X-Gmail-Labels"] = "Inbox"
    message["Subject"] = "Quarterly numbers"
    message["From"] = "Alice Example <alice@example.com>"
    message["To"] = "Bob <bob@example.com>, carol@example.com"
    message["Date"] = "Mon, 01 Jan 2001 12:00:00 +0000"
    message.set_content("Numbers attached.\n")
    message.add_attachment(
        b"%PDF-1.4 fake", maintype="application", subtype="pdf", filename="report.pdf"
    )
    return message.as_bytes()


def _write_archive(path: Path) -> Path:
    messages = [
        _attachment_message(),
        _text_message("Weekly update", "Inbox,Important"),
        _text_message("Old receipt", "Work/Receipts"),
    ]
    path.write_bytes(b"".join(ENVELOPE + raw + b"\n" for raw in messages))
    return path


def test_parse_args_resolves_paths(tmp_path: Path) -> None:
    archive = tmp_path / "archive.mbox"
    args = cli.parse_args(["index", str(archive), "--report", "report.json"])

    assert args.command == "index"
    assert args.archive == archive.resolve()
    assert args.report.is_absolute()
    assert args.chunk_size == cli.DEFAULT_CHUNK_SIZE


def test_parse_args_rejects_non_positive_chunk_size(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        cli.parse_args(["folders", str(tmp_path / "a.mbox"), "--chunk-size", "0"])


def test_parse_args_rejects_negative_offset(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        cli.parse_args(["list", str(tmp_path / "a.mbox"), "Inbox", "--offset", "-1"])


def test_folders_command_prints_tree(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    archive = _write_archive(tmp_path / "archive.mbox")

    exit_code = cli.main(["folders", str(archive), "--no-progress"])

    captured = capsys.readouterr().out
    assert exit_code == 0
    assert "(3 messages)" in captured
    lines = captured.splitlines()
    assert any(line.split() == ["Inbox", "2", "Inbox"] for line in lines)
    assert any(line.split() == ["All", "Mail", "3", "All", "Mail"] for line in lines)
    assert any(line.split() == ["Receipts", "1", "Work/Receipts"] for line in lines)
    assert any(line.startswith("    Receipts") for line in lines)


def test_list_command_prints_page(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    archive = _write_archive(tmp_path / "archive.mbox")

    exit_code = cli.main(["list", str(archive), "All Mail", "--offset", "1", "--no-progress"])

    captured = capsys.readouterr().out
    assert exit_code == 0
    assert "Messages 2-3 of 3 in All Mail:" in captured
    assert "All Mail::1" in captured
    assert "Weekly update" in captured
    assert "Quarterly numbers" not in captured


def test_list_command_reports_empty_folder(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    archive = _write_archive(tmp_path / "archive.mbox")

    exit_code = cli.main(["list", str(archive), "Missing", "--no-progress"])

    assert exit_code == 0
    assert "No messages found in folder 'Missing'" in capsys.readouterr().out


def test_show_command_prints_message(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    archive = _write_archive(tmp_path / "archive.mbox")

    exit_code = cli.main(["show", str(archive), "Inbox::0", "--no-progress"])

    captured = capsys.readouterr().out
    assert exit_code == 0
    assert "Subject: Quarterly numbers" in captured
    assert "From: Alice Example <alice@example.com>" in captured
    assert "To: Bob <bob@example.com>; carol@example.com" in captured
    assert "Numbers attached." in captured
    assert "[0] report.pdf  13 B  application/pdf" in captured


def test_show_command_reports_unknown_message(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    archive = _write_archive(tmp_path / "archive.mbox")

    exit_code = cli.main(["show", str(archive), "Inbox::99", "--no-progress"])

    assert exit_code == 1
    assert "Error: Message not found" in capsys.readouterr().err


def test_attachment_command_writes_file(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    archive = _write_archive(tmp_path / "archive.mbox")
    output_dir = tmp_path / "out"
    output_dir.mkdir()

    exit_code = cli.main(
        ["attachment", str(archive), "Inbox::0", "0", "--output", str(output_dir), "--no-progress"]
    )

    assert exit_code == 0
    assert (output_dir / "report.pdf").read_bytes() == b"%PDF-1.4 fake"
    assert "Saved report.pdf (13 B)" in capsys.readouterr().out


def test_search_command_loads_and_matches(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    archive = _write_archive(tmp_path / "archive.mbox")

    exit_code = cli.main(["search", str(archive), "RECEIPT", "--no-progress"])

    captured = capsys.readouterr().out
    assert exit_code == 0
    assert "Search complete: 1 matches for 'RECEIPT'." in captured
    assert "Old receipt" in captured


def test_search_command_limited_to_folder(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    archive = _write_archive(tmp_path / "archive.mbox")

    exit_code = cli.main(
        ["search", str(archive), "receipt", "--folder", "Inbox", "--no-progress"]
    )

    assert exit_code == 0
    assert "Search complete: 0 matches" in capsys.readouterr().out


def test_index_command_generates_report(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    archive = _write_archive(tmp_path / "archive.mbox")
    report = tmp_path / "reports" / "index.json"

    exit_code = cli.main(["index", str(archive), "--report", str(report), "--no-progress"])

    captured = capsys.readouterr().out
    assert exit_code == 0
    assert "Index complete: 3 messages" in captured
    assert "3 labelled." in captured
    data = json.loads(report.read_text())
    assert data["summary"]["total_messages"] == 3
    assert data["archive"] == str(archive.resolve())
    assert [entry["labels"] for entry in data["messages"]][1] == ["Inbox", "Important"]


def test_missing_archive_reports_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["folders", str(tmp_path / "missing.mbox"), "--no-progress"])

    captured = capsys.readouterr()
    assert exit_code == 1
    assert captured.err.startswith("Error: Archive not found")


@pytest.mark.parametrize(
    ("size", "expected"),
    [
        (0, "0 B"),
        (512, "512 B"),
        (1536, "1.5 KB"),
        (1024 * 1024, "1.0 MB"),
        (3 * 1024 * 1024 * 1024, "3.0 GB"),
    ],
)
def test_format_file_size(size: int, expected: str) -> None:
    assert cli.format_file_size(size) == expected
