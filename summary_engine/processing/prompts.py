"""Summary tool definition and prompt builders for every summarization call."""

from __future__ import annotations

from typing import Any

from summary_engine.mail.types import EmailMessage
from summary_engine.processing.types import Category, SummaryLength, Urgency

SUMMARY_TOOL_NAME = "record_email_summary"

# ── Tool definition ────────────────────────────────────────────────────────────

#: Tool schema for structured email summaries.
#: Descriptions are intentionally terse to keep on-device prompts small.
SUMMARY_TOOL: dict[str, Any] = {
    "name": SUMMARY_TOOL_NAME,
    "description": "Record a structured summary of an email.",
    "input_schema": {
        "type": "object",
        "properties": {
            "headline": {
                "type": "string",
                "description": "One sentence summary headline.",
            },
            "body": {
                "type": "string",
                "description": "A concise 2-4 sentence summary.",
            },
            "category": {
                "type": "string",
                "enum": [c.value for c in Category],
            },
            "action_items": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Action items extracted from the email, if any.",
            },
            "urgency": {
                "type": "string",
                "enum": [u.value for u in Urgency],
            },
        },
        "required": ["headline", "body", "category", "action_items", "urgency"],
    },
}


_LENGTH_INSTRUCTION: dict[SummaryLength, str] = {
    SummaryLength.SHORT: "Summarize emails concisely in 2-4 sentences.",
    SummaryLength.MEDIUM: (
        "Generate a moderately detailed summary in 4-7 sentences covering key "
        "points and important context."
    ),
    SummaryLength.FULL: (
        "Generate a complete, detailed summary that covers all major points in "
        "the email in 6-12 sentences."
    ),
}


def instructions(length: SummaryLength) -> str:
    """System-style preamble shared by every call."""
    return (
        "You are an email summarization assistant.\n"
        f"{_LENGTH_INSTRUCTION[length]}\n"
        "Extract action items when present.\n"
        "Classify category and urgency.\n"
        "Focus only on the provided content.\n"
        "Do not hallucinate or infer details not in the email.\n"
        f"Call {SUMMARY_TOOL_NAME} with your summary."
    )


def _header(email: EmailMessage) -> str:
    lines = [f"From: {email.sender}", f"Subject: {email.subject}"]
    if email.received_date is not None:
        lines.append(f"Received: {email.received_date:%d %b %Y %H:%M}")
    return "\n".join(lines)


# ── Prompt builders ────────────────────────────────────────────────────────────


def build_prompt(
    email: EmailMessage,
    body: str,
    length: SummaryLength,
    *,
    truncated: bool = False,
    running_summary: str | None = None,
) -> str:
    """Prompt for a single-call summary of ``body``.

    ``running_summary`` carries the folded summary of earlier thread messages.
    """
    parts = [
        instructions(length),
        "",
        "Summarize the following email. Focus only on facts from the text.",
        _header(email),
    ]
    if running_summary:
        parts.append(f"Earlier in this thread: {running_summary}")
    parts.append("---")
    parts.append(body)
    if truncated:
        parts.append("\n[… email truncated …]")
    return "\n".join(parts)


def build_chunk_prompt(
    email: EmailMessage,
    chunk_text: str,
    index: int,
    total: int,
    thread: bool = False,
) -> str:
    """Map-phase prompt: summarize one segment of a long email, or one message
    of a long thread, in isolation.

    Part summaries are always short; the requested length applies to the
    reduce call.
    """
    if thread:
        position = f"This is message {index + 1} of {total} in an email thread, oldest first. "
    else:
        position = f"This is part {index + 1} of {total} of a long email. "
    return "\n".join(
        [
            instructions(SummaryLength.SHORT),
            "",
            position + "Summarize only this part.",
            _header(email),
            "---",
            chunk_text,
        ]
    )


def build_reduce_prompt(
    email: EmailMessage,
    chunk_summaries: list[str],
    length: SummaryLength,
    *,
    running_summary: str | None = None,
) -> str:
    """Reduce-phase prompt: merge ordered part summaries into one summary."""
    total = len(chunk_summaries)
    parts_text = "\n".join(
        f"[Part {i}/{total}] {text}" for i, text in enumerate(chunk_summaries, start=1)
    )
    parts = [
        instructions(length),
        "",
        f"The following are summaries of the {total} consecutive parts of one long "
        "email, in order. Write a single summary of the whole email.",
        _header(email),
    ]
    if running_summary:
        parts.append(f"Earlier in this thread: {running_summary}")
    parts.append("---")
    parts.append(parts_text)
    return "\n".join(parts)


def build_fold_prompt(
    email: EmailMessage,
    message_body: str,
    running_summary: str | None,
) -> str:
    """Thread fold prompt: extend the running summary with one older message."""
    parts = [
        instructions(SummaryLength.SHORT),
        "",
        "You are reading an email thread one message at a time, oldest first.",
        f"Thread subject: {email.subject}",
    ]
    if running_summary:
        parts.append(f"Summary of the thread so far: {running_summary}")
    parts.append("Update the summary with the next message:")
    parts.append("---")
    parts.append(message_body)
    return "\n".join(parts)
