"""Types for the email summarization pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum


class Category(str, Enum):
    """Fixed set of summary categories.

    Values match the enum in the summary tool schema so model output can be
    mapped without a separate lookup table.
    """

    ACTION_REQUIRED = "action-required"
    INFORMATIONAL = "informational"
    PROMOTIONAL = "promotional"
    NEWSLETTER = "newsletter"
    SPAM = "spam"


class Urgency(str, Enum):
    """How soon the reader should look at the email."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SummaryLength(str, Enum):
    """Requested level of detail for the summary body."""

    SHORT = "short"
    MEDIUM = "medium"
    FULL = "full"


class SummarySource(str, Enum):
    """Where the final summary came from."""

    MODEL = "model"
    FALLBACK = "fallback"


# ── Summary ────────────────────────────────────────────────────────────────────


_MINIMAL_BODY = "This email does not contain enough text to summarize reliably."
_REDACTED_BODY = "Content could not be summarized safely."


@dataclass(frozen=True)
class Summary:
    """Structured summary of one email (or one thread).

    The minimal, redacted and fallback variants are ordinary Summary values so
    callers render them the same way as a generated summary.
    """

    headline: str
    body: str
    category: Category
    urgency: Urgency
    action_items: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def minimal(cls, subject: str) -> Summary:
        """Placeholder for emails with too little text to summarize."""
        return cls(
            headline=subject.strip() or "Very short email",
            body=_MINIMAL_BODY,
            category=Category.INFORMATIONAL,
            urgency=Urgency.LOW,
        )

    @classmethod
    def redacted(cls, subject: str) -> Summary:
        """Placeholder used when the model refuses on content-safety grounds."""
        return cls(
            headline=subject.strip() or "Email summary unavailable",
            body=_REDACTED_BODY,
            category=Category.INFORMATIONAL,
            urgency=Urgency.LOW,
        )

    @classmethod
    def fallback(
        cls,
        subject: str,
        body: str,
        action_items: tuple[str, ...] | list[str] = (),
        category: Category = Category.INFORMATIONAL,
        urgency: Urgency = Urgency.LOW,
    ) -> Summary:
        """Rule-based summary used when the model cannot produce one."""
        return cls(
            headline=subject.strip() or "Email summary",
            body=body,
            category=category,
            urgency=urgency,
            action_items=tuple(action_items),
        )


@dataclass(frozen=True)
class PartialSummary:
    """A streamed, possibly incomplete snapshot of a Summary."""

    headline: str | None = None
    body: str | None = None
    category: Category | None = None
    urgency: Urgency | None = None
    action_items: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_complete(self) -> bool:
        return None not in (self.headline, self.body, self.category, self.urgency)

    def complete(self) -> Summary:
        """Convert to a Summary.

        Raises:
            ValueError: if any required field has not been revealed yet.
        """
        if not self.is_complete:
            raise ValueError("partial summary is missing required fields")
        return Summary(
            headline=self.headline,  # type: ignore[arg-type]
            body=self.body,  # type: ignore[arg-type]
            category=self.category,  # type: ignore[arg-type]
            urgency=self.urgency,  # type: ignore[arg-type]
            action_items=self.action_items,
        )

    @classmethod
    def of(cls, summary: Summary) -> PartialSummary:
        return cls(
            headline=summary.headline,
            body=summary.body,
            category=summary.category,
            urgency=summary.urgency,
            action_items=summary.action_items,
        )


# ── Result ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SummaryResult:
    """Terminal outcome of a summarization request.

    ``note`` is short user-facing advisory text (thermal slowdown, unsupported
    language, fallback reason).  It never carries raw error detail.
    """

    summary: Summary
    source: SummarySource
    note: str | None = None
    language_supported: bool = True
    truncated: bool = False

    def with_note(self, note: str | None) -> SummaryResult:
        """Return a copy with ``note`` appended to any existing note."""
        if not note:
            return self
        merged = f"{self.note} {note}" if self.note else note
        return replace(self, note=merged)
