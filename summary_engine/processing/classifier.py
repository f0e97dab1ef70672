"""Maps every terminal outcome of an inference call to exactly one SummaryResult."""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum

from summary_engine.inference.capability import ContextWindowExceeded, GuardrailViolation
from summary_engine.mail.types import EmailMessage
from summary_engine.processing.fallback import fallback_summary
from summary_engine.processing.preprocessor import PreparedContent
from summary_engine.processing.types import Summary, SummaryLength, SummaryResult, SummarySource

logger = logging.getLogger(__name__)

FAILURE_NOTE = "Model generation failed, fallback used."
UNAVAILABLE_NOTE = "On-device model unavailable, fallback used."


class Outcome(str, Enum):
    SUCCESS = "success"
    GUARDRAIL_REJECTION = "guardrail_rejection"
    CONTEXT_OVERFLOW = "context_overflow"
    FAILURE = "failure"
    LOW_CONTENT = "low_content"


def outcome_for(exc: Exception) -> Outcome:
    """Classify an exception raised by an inference call.

    Timeouts and every other error are plain failures.
    Caller-initiated cancellation is an ``asyncio.CancelledError`` and never
    reaches this function; it is reported separately as ``cancelled``.
    """
    if isinstance(exc, GuardrailViolation):
        return Outcome.GUARDRAIL_REJECTION
    if isinstance(exc, ContextWindowExceeded):
        return Outcome.CONTEXT_OVERFLOW
    return Outcome.FAILURE


def resolve(
    outcome: Outcome,
    email: EmailMessage,
    prepared: PreparedContent,
    length: SummaryLength = SummaryLength.SHORT,
    summary: Summary | None = None,
    note: str | None = None,
) -> SummaryResult:
    """Build the final result for ``outcome``.

    A CONTEXT_OVERFLOW reaching this point means the truncated retry has
    already failed, so it resolves to the fallback variant like any other
    failure.
    """
    if outcome is Outcome.SUCCESS:
        if summary is None:
            raise ValueError("a successful outcome needs a summary")
        result = SummaryResult(summary=summary, source=SummarySource.MODEL)
    elif outcome is Outcome.LOW_CONTENT:
        result = SummaryResult(summary=Summary.minimal(email.subject), source=SummarySource.FALLBACK)
    elif outcome is Outcome.GUARDRAIL_REJECTION:
        result = SummaryResult(summary=Summary.redacted(email.subject), source=SummarySource.FALLBACK)
    else:
        result = SummaryResult(
            summary=fallback_summary(email.subject, prepared.normalized_body, length),
            source=SummarySource.FALLBACK,
            note=FAILURE_NOTE,
        )

    result = replace(
        result,
        language_supported=prepared.language_supported,
        truncated=prepared.truncated,
    )
    return result.with_note(prepared.note).with_note(note)


def classify_failure(
    exc: Exception,
    email: EmailMessage,
    prepared: PreparedContent,
    length: SummaryLength = SummaryLength.SHORT,
) -> SummaryResult:
    """Log ``exc`` and convert it to a placeholder result; never re-raises."""
    outcome = outcome_for(exc)
    if outcome is Outcome.GUARDRAIL_REJECTION:
        logger.warning("email=%s summary blocked by content-safety guardrail", email.id)
    else:
        logger.warning(
            "email=%s summary generation failed (%s), using fallback: %s",
            email.id,
            outcome.value,
            exc,
        )
    return resolve(outcome, email, prepared, length)


def unavailable_result(
    email: EmailMessage,
    prepared: PreparedContent,
    length: SummaryLength = SummaryLength.SHORT,
) -> SummaryResult:
    """Rule-based result used when the model cannot be reached at all."""
    result = SummaryResult(
        summary=fallback_summary(email.subject, prepared.normalized_body, length),
        source=SummarySource.FALLBACK,
        note=UNAVAILABLE_NOTE,
        language_supported=prepared.language_supported,
        truncated=prepared.truncated,
    )
    return result.with_note(prepared.note)
