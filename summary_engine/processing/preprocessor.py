"""Content preprocessing — turns a raw email into a bounded, prompt-ready payload."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from html.parser import HTMLParser

from summary_engine.mail.types import EmailMessage
from summary_engine.processing.language import (
    UNDETERMINED,
    LanguageDetector,
    ScriptLanguageDetector,
    is_supported,
)

logger = logging.getLogger(__name__)

#: Bodies shorter than this (after HTML stripping and trimming) skip inference.
MIN_CONTENT_CHARS = 50

#: Maximum characters of body text sent in a single prompt; applied after HTML
#: stripping, so this represents actual text content rather than raw markup.
BODY_CHAR_LIMIT = 4_000

#: Bodies longer than this are summarized chunk by chunk, then reduced.
CHUNKING_THRESHOLD = 10_000

DEFAULT_CHUNK_OVERLAP = 200
DEFAULT_THREAD_WINDOW = 5

#: Body size used for the single retry after a context-length overflow.
RETRY_CHAR_LIMIT = 2_000

NO_BODY_NOTE = "No text body to summarize."
TOO_SHORT_NOTE = "Email is too short for full summarization."
UNSUPPORTED_LANGUAGE_NOTE = "Language may be unsupported for on-device summarization."


# ── HTML stripper ───────────────────────────────────────────────────────────────

_BLOCK_TAGS = frozenset(
    {"p", "br", "div", "tr", "li", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "table"}
)
_INVISIBLE_TAGS = frozenset({"script", "style", "head", "title"})


class _HTMLStripper(HTMLParser):
    """HTMLParser subclass that collects visible text, one line per block."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._parts: list[str] = []
        self._hidden_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in _INVISIBLE_TAGS:
            self._hidden_depth += 1
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n")

    def handle_endtag(self, tag: str) -> None:
        if tag in _INVISIBLE_TAGS and self._hidden_depth:
            self._hidden_depth -= 1
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n")

    def handle_data(self, data: str) -> None:
        if self._hidden_depth:
            return
        text = data.strip()
        if text:
            self._parts.append(text + " ")

    def get_text(self) -> str:
        return "".join(self._parts)


def strip_html(text: str) -> str:
    """Return plain text from an HTML string.

    If the input doesn't look like HTML, or stripping produces nothing, the
    original string is returned unchanged.
    """
    if "<" not in text or ">" not in text:
        return text
    stripper = _HTMLStripper()
    try:
        stripper.feed(text)
        stripper.close()
    except Exception:  # noqa: BLE001
        return text
    result = stripper.get_text()
    return result if result.strip() else text


_SPACES = re.compile(r"[ \t\u00a0\u2007]+")
_SPACE_BEFORE_NEWLINE = re.compile(r" *\n *")
_BLANK_RUNS = re.compile(r"\n{3,}")


def normalize_body(raw: str) -> str:
    """Strip markup and normalise whitespace; the result is what gets measured."""
    text = strip_html(raw or "")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _SPACES.sub(" ", text)
    text = _SPACE_BEFORE_NEWLINE.sub("\n", text)
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()


# ── Thread helpers ──────────────────────────────────────────────────────────────

_ATTRIBUTION = re.compile(r"^On .{1,200} wrote:\s*$")
_ORIGINAL_MESSAGE = re.compile(r"^-{2,}\s*Original Message\s*-{2,}\s*$", re.IGNORECASE)

# Lines shorter than this ("Thanks,", "Hi Bob") are never treated as duplicates.
_MIN_DEDUP_LINE = 15


def strip_quoted(text: str) -> str:
    """Remove quoted history: ``>`` lines and everything after an attribution."""
    kept: list[str] = []
    for line in text.split("\n"):
        stripped = line.strip()
        if _ATTRIBUTION.match(stripped) or _ORIGINAL_MESSAGE.match(stripped):
            break
        if stripped.startswith(">"):
            continue
        kept.append(line)
    return "\n".join(kept).strip()


def dedupe_against(previous: str, current: str) -> str:
    """Drop lines of ``current`` that already appeared in ``previous``."""
    seen = {
        line.strip()
        for line in previous.split("\n")
        if len(line.strip()) >= _MIN_DEDUP_LINE
    }
    kept = [line for line in current.split("\n") if line.strip() not in seen]
    return "\n".join(kept).strip()


# ── Chunking ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Chunk:
    """One overlapping segment of a long body, tagged with its order."""

    index: int
    text: str


def chunk_text(
    text: str,
    size: int = BODY_CHAR_LIMIT,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[Chunk]:
    """Split ``text`` into fixed-size segments that overlap by ``overlap`` chars.

    Produces ceil((len - overlap) / (size - overlap)) chunks for text longer
    than ``size``.
    """
    if not 0 <= overlap < size:
        raise ValueError(f"overlap must be in [0, {size}), got {overlap}")
    chunks: list[Chunk] = []
    start = 0
    while True:
        end = min(start + size, len(text))
        chunks.append(Chunk(index=len(chunks), text=text[start:end]))
        if end >= len(text):
            return chunks
        start = end - overlap


def truncate_for_retry(text: str, limit: int = RETRY_CHAR_LIMIT) -> str:
    """Aggressive truncation used after a context-length overflow."""
    return text[:limit]


# ── Prepared payload ───────────────────────────────────────────────────────────


class ContentMode(str, Enum):
    MINIMAL = "minimal"
    SINGLE = "single"
    CHUNKED = "chunked"


@dataclass(frozen=True)
class PreparedContent:
    """Prompt-ready view of an email.

    ``text`` is the (possibly truncated) body for SINGLE mode; ``chunks`` is
    populated only in CHUNKED mode.  ``thread_context`` holds the deduplicated
    bodies of the older thread messages inside the window, oldest first.
    ``thread_chunks`` marks a thread longer than the window whose windowed
    messages became the chunks, one per message.
    """

    mode: ContentMode
    normalized_body: str
    text: str = ""
    chunks: tuple[Chunk, ...] = ()
    truncated: bool = False
    language: str = UNDETERMINED
    language_supported: bool = True
    thread_context: tuple[str, ...] = field(default_factory=tuple)
    thread_chunks: bool = False
    note: str | None = None

    @property
    def content_key(self) -> str:
        """Everything that is summarized, used as the fingerprint input."""
        return "\x1e".join((*self.thread_context, self.normalized_body))


class ContentPreprocessor:
    """Normalises raw email content into a bounded prompt payload.

    Usage::

        preprocessor = ContentPreprocessor(chunk_overlap=200)
        prepared = preprocessor.prepare(email)
    """

    def __init__(
        self,
        detector: LanguageDetector | None = None,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        thread_window: int = DEFAULT_THREAD_WINDOW,
    ) -> None:
        if not 0 <= chunk_overlap < BODY_CHAR_LIMIT:
            raise ValueError(f"chunk_overlap must be in [0, {BODY_CHAR_LIMIT})")
        if thread_window < 1:
            raise ValueError("thread_window must be at least 1")
        self._detector = detector or ScriptLanguageDetector()
        self._overlap = chunk_overlap
        self._thread_window = thread_window

    def prepare(self, email: EmailMessage) -> PreparedContent:
        normalized = normalize_body(email.body)

        if len(normalized) < MIN_CONTENT_CHARS:
            return PreparedContent(
                mode=ContentMode.MINIMAL,
                normalized_body=normalized,
                note=NO_BODY_NOTE if not normalized else TOO_SHORT_NOTE,
            )

        thread_context: tuple[str, ...] = ()
        body = normalized
        if email.prior_messages:
            thread_context, body = self._fold_thread(email, normalized)

        language = self._detector.detect(body)
        supported = is_supported(language)
        note = None if supported else UNSUPPORTED_LANGUAGE_NOTE

        if len(email.prior_messages) + 1 > self._thread_window:
            # Map each windowed message separately, then reduce.
            messages = (*thread_context, body)
            chunks = tuple(
                Chunk(index=i, text=text[:BODY_CHAR_LIMIT]) for i, text in enumerate(messages)
            )
            logger.debug("email=%s long thread → %d message chunk(s)", email.id, len(chunks))
            return PreparedContent(
                mode=ContentMode.CHUNKED,
                normalized_body=normalized,
                chunks=chunks,
                truncated=any(len(text) > BODY_CHAR_LIMIT for text in messages),
                language=language,
                language_supported=supported,
                thread_context=thread_context,
                thread_chunks=True,
                note=note,
            )

        if len(body) > CHUNKING_THRESHOLD:
            chunks = tuple(chunk_text(body, BODY_CHAR_LIMIT, self._overlap))
            logger.debug(
                "email=%s chunked: %d chars → %d chunk(s)", email.id, len(body), len(chunks)
            )
            return PreparedContent(
                mode=ContentMode.CHUNKED,
                normalized_body=normalized,
                chunks=chunks,
                language=language,
                language_supported=supported,
                thread_context=thread_context,
                note=note,
            )

        truncated = len(body) > BODY_CHAR_LIMIT
        return PreparedContent(
            mode=ContentMode.SINGLE,
            normalized_body=normalized,
            text=body[:BODY_CHAR_LIMIT],
            truncated=truncated,
            language=language,
            language_supported=supported,
            thread_context=thread_context,
            note=note,
        )

    def _fold_thread(self, email: EmailMessage, normalized: str) -> tuple[tuple[str, ...], str]:
        """Return (older bodies, newest body) with quotes removed and repeats dropped.

        Only the last ``thread_window`` messages (the email itself included)
        are kept.
        """
        messages = [*email.prior_messages, email]
        dropped = len(messages) - self._thread_window
        if dropped > 0:
            logger.debug(
                "email=%s thread has %d message(s); dropping %d oldest",
                email.id,
                len(messages),
                dropped,
            )
            messages = messages[dropped:]

        bodies: list[str] = []
        previous = ""
        for message in messages:
            text = normalized if message is email else normalize_body(message.body)
            unquoted = strip_quoted(text)
            cleaned = dedupe_against(previous, unquoted) if previous else unquoted
            previous = unquoted
            bodies.append(cleaned)

        newest = bodies.pop() or normalized
        older = tuple(
            b[:BODY_CHAR_LIMIT] for b in bodies if b
        )
        return older, newest
