"""Data types describing the email handed to the summarization engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class EmailMessage:
    """An immutable snapshot of an email, owned by the caller.

    ``thread`` holds the prior messages of the conversation, oldest first and
    most recent last.  It is only consulted when ``is_threaded`` is set.
    """

    id: str
    subject: str
    sender: str
    body: str                                    # raw text, may contain HTML
    received_date: datetime | None = None
    is_threaded: bool = False
    thread: tuple[EmailMessage, ...] = field(default_factory=tuple)

    @property
    def prior_messages(self) -> tuple[EmailMessage, ...]:
        """Prior thread messages, or an empty tuple for standalone emails."""
        return self.thread if self.is_threaded else ()
