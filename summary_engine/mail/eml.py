"""Load .eml files into EmailMessage snapshots."""

from __future__ import annotations

import logging
from datetime import datetime
from email import message_from_bytes
from email.header import decode_header
from email.message import Message
from email.utils import parsedate_to_datetime
from pathlib import Path

from summary_engine.mail.types import EmailMessage

logger = logging.getLogger(__name__)


def _decode_bytes(data: bytes, charset: str | None) -> str:
    try:
        return data.decode(charset or "utf-8", errors="ignore")
    except LookupError:
        logger.debug("Unknown charset %r; decoding as utf-8", charset)
        return data.decode("utf-8", errors="ignore")


def decode_header_value(value: str) -> str:
    """Decode an RFC 2047 encoded header into plain text."""
    fragments: list[str] = []
    for part, encoding in decode_header(value):
        if isinstance(part, bytes):
            fragments.append(_decode_bytes(part, encoding))
        else:
            fragments.append(part)
    return "".join(fragments).strip()


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True) or b""
    return _decode_bytes(payload, part.get_content_charset())


def extract_body(message: Message) -> str:
    """Return the text/plain parts, or the text/html parts when there are none.

    HTML is returned as-is; the preprocessor strips markup.
    """
    if not message.is_multipart():
        return _decode_part(message).strip()

    plain: list[str] = []
    html: list[str] = []
    for part in message.walk():
        if part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain":
            plain.append(_decode_part(part))
        elif content_type == "text/html":
            html.append(_decode_part(part))
    return "\n".join(plain or html).strip()


def _parse_date(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        logger.debug("Unparseable Date header %r", raw)
        return None


def load_eml(path: str | Path) -> EmailMessage:
    """Parse one .eml file.  The Message-ID header (or the file name) becomes the id."""
    path = Path(path)
    message = message_from_bytes(path.read_bytes())
    message_id = (message.get("Message-ID") or "").strip().strip("<>") or path.stem
    return EmailMessage(
        id=message_id,
        subject=decode_header_value(message.get("Subject", "")),
        sender=decode_header_value(message.get("From", "")),
        body=extract_body(message),
        received_date=_parse_date(message.get("Date")),
        is_threaded=bool(message.get("In-Reply-To") or message.get("References")),
    )
