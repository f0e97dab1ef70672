"""SQLite table schema and typed row for the summary cache."""

from dataclasses import dataclass


# ── DDL ────────────────────────────────────────────────────────────────────────

_CREATE_SUMMARY_CACHE = """
CREATE TABLE IF NOT EXISTS summary_cache (
    email_id      TEXT PRIMARY KEY,
    fingerprint   TEXT NOT NULL,
    headline      TEXT NOT NULL,
    body          TEXT NOT NULL,
    category      TEXT NOT NULL,
    urgency       TEXT NOT NULL,
    action_items  TEXT NOT NULL DEFAULT '[]',
    source        TEXT NOT NULL,
    note          TEXT,
    language_supported INTEGER NOT NULL DEFAULT 1,
    truncated     INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

#: All DDL statements in creation order.
ALL_TABLES: list[str] = [
    _CREATE_SUMMARY_CACHE,
]


@dataclass(frozen=True)
class CacheRow:
    """A full row from the summary_cache table."""

    email_id: str
    fingerprint: str
    headline: str
    body: str
    category: str
    urgency: str
    action_items: str  # JSON-encoded list[str]
    source: str
    note: str | None
    language_supported: bool
    truncated: bool
    created_at: str
