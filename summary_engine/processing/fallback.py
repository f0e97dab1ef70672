"""Rule-based summaries for when the on-device model is not an option."""

from __future__ import annotations

import re

from summary_engine.processing.types import Category, Summary, SummaryLength, Urgency

# (sentence count, character cap used when no sentence boundary is found)
_LENGTH_BUDGET: dict[SummaryLength, tuple[int, int]] = {
    SummaryLength.SHORT: (3, 220),
    SummaryLength.MEDIUM: (5, 700),
    SummaryLength.FULL: (8, 1_200),
}

_MAX_ACTION_ITEMS = 5

# Text without punctuation would otherwise come back as one giant "sentence".
_MAX_SENTENCE_CHARS = 400

# A sentence ends at . ! ? (or their CJK forms) followed by whitespace or end.
_SENTENCE = re.compile(r"[^.!?。！？]+[.!?。！？]+(?=\s|$)|[^.!?。！？]+$", re.DOTALL)


def first_sentences(text: str, max_count: int) -> str:
    """Return up to ``max_count`` leading sentences of ``text``, space-joined."""
    sentences: list[str] = []
    for match in _SENTENCE.finditer(text):
        sentence = " ".join(match.group(0).split())[:_MAX_SENTENCE_CHARS]
        if sentence:
            sentences.append(sentence)
        if len(sentences) >= max_count:
            break
    return " ".join(sentences)


def extract_action_items(body: str) -> list[str]:
    """Bullet lines and polite requests, at most five."""
    items: list[str] = []
    for raw in body.split("\n"):
        line = raw.strip()
        if not line:
            continue
        lower = line.lower()
        if (
            line.startswith(("- ", "* "))
            or lower.startswith("please ")
            or "action required" in lower
            or "todo" in lower
        ):
            items.append(line)
        if len(items) >= _MAX_ACTION_ITEMS:
            break
    return items


def infer_category(subject: str, body: str) -> Category:
    combined = f"{subject}\n{body}".lower()
    if any(word in combined for word in ("unsubscribe", "sale", "offer")):
        return Category.PROMOTIONAL
    if "newsletter" in combined or "digest" in combined:
        return Category.NEWSLETTER
    if any(word in combined for word in ("urgent", "action required", "please review")):
        return Category.ACTION_REQUIRED
    return Category.INFORMATIONAL


def infer_urgency(subject: str, body: str) -> Urgency:
    combined = f"{subject}\n{body}".lower()
    if any(word in combined for word in ("urgent", "asap", "immediately", "today")):
        return Urgency.HIGH
    if any(word in combined for word in ("tomorrow", "this week", "deadline")):
        return Urgency.MEDIUM
    return Urgency.LOW


def fallback_summary(
    subject: str,
    body: str,
    length: SummaryLength = SummaryLength.SHORT,
) -> Summary:
    """Build the *fallback* Summary variant from the leading sentences of ``body``."""
    sentence_count, char_cap = _LENGTH_BUDGET[length]
    summary_body = first_sentences(body, sentence_count) or body[:char_cap]
    return Summary.fallback(
        subject=subject,
        body=summary_body,
        action_items=extract_action_items(body),
        category=infer_category(subject, body),
        urgency=infer_urgency(subject, body),
    )
