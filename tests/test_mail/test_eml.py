"""Tests for .eml loading — files are written to a temporary directory."""

from email.message import EmailMessage as MimeMessage
from pathlib import Path

from summary_engine.mail.eml import decode_header_value, extract_body, load_eml


def write_eml(tmp_path: Path, message: MimeMessage, name: str = "mail.eml") -> Path:
    path = tmp_path / name
    path.write_bytes(bytes(message))
    return path


def plain_message(**headers: str) -> MimeMessage:
    message = MimeMessage()
    message["Subject"] = headers.get("Subject", "Q2 budget")
    message["From"] = headers.get("From", "Alice <alice@example.com>")
    for key in ("Message-ID", "Date", "In-Reply-To"):
        if key in headers:
            message[key] = headers[key]
    message.set_content("Please review the budget by Friday.")
    return message


class TestDecodeHeader:
    def test_plain(self) -> None:
        assert decode_header_value("Hello") == "Hello"

    def test_encoded_word(self) -> None:
        assert decode_header_value("=?utf-8?b?Q2Fmw6kgbWVldGluZw==?=") == "Café meeting"


class TestExtractBody:
    def test_prefers_plain_over_html(self) -> None:
        message = MimeMessage()
        message.set_content("Plain body")
        message.add_alternative("<p>HTML body</p>", subtype="html")
        assert extract_body(message) == "Plain body"

    def test_html_only(self) -> None:
        message = MimeMessage()
        message.set_content("<p>Only HTML</p>", subtype="html")
        assert extract_body(message) == "<p>Only HTML</p>"

    def test_skips_text_attachments(self) -> None:
        message = MimeMessage()
        message.set_content("Body text")
        message.add_attachment("secret,data", filename="export.csv", subtype="csv")
        assert extract_body(message) == "Body text"


class TestLoadEml:
    def test_uses_message_id(self, tmp_path: Path) -> None:
        path = write_eml(tmp_path, plain_message(**{"Message-ID": "<abc123@example.com>"}))
        email = load_eml(path)
        assert email.id == "abc123@example.com"
        assert email.subject == "Q2 budget"
        assert email.sender == "Alice <alice@example.com>"
        assert email.body == "Please review the budget by Friday."
        assert email.is_threaded is False

    def test_falls_back_to_file_stem(self, tmp_path: Path) -> None:
        email = load_eml(write_eml(tmp_path, plain_message(), name="budget-42.eml"))
        assert email.id == "budget-42"

    def test_parses_date(self, tmp_path: Path) -> None:
        path = write_eml(tmp_path, plain_message(Date="Fri, 27 Feb 2026 09:00:00 +0000"))
        email = load_eml(path)
        assert email.received_date is not None
        assert (email.received_date.year, email.received_date.month) == (2026, 2)

    def test_bad_date_is_none(self, tmp_path: Path) -> None:
        path = tmp_path / "raw.eml"
        path.write_bytes(
            b"Subject: Hello\r\nFrom: bob@example.com\r\nDate: not a date\r\n\r\nBody text\r\n"
        )
        email = load_eml(path)
        assert email.received_date is None
        assert email.id == "raw"
        assert email.body == "Body text"

    def test_reply_is_threaded(self, tmp_path: Path) -> None:
        path = write_eml(tmp_path, plain_message(**{"In-Reply-To": "<parent@example.com>"}))
        assert load_eml(path).is_threaded is True

    def test_unknown_charset_decodes_as_utf8(self, tmp_path: Path) -> None:
        path = tmp_path / "odd.eml"
        path.write_bytes(
            b"Subject: =?x-unknown?q?Caf=C3=A9_meeting?=\r\n"
            b"From: bob@example.com\r\n"
            b"Content-Type: text/plain; charset=x-unknown\r\n"
            b"\r\n"
            b"Caf\xc3\xa9 opens at nine tomorrow.\r\n"
        )
        email = load_eml(path)
        assert email.subject == "Café meeting"
        assert email.body == "Café opens at nine tomorrow."
