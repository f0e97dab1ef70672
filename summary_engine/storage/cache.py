"""Fingerprint cache — persisted summaries keyed by email id, validated by content hash."""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from pathlib import Path

from summary_engine.processing.types import (
    Category,
    Summary,
    SummaryLength,
    SummaryResult,
    SummarySource,
    Urgency,
)
from summary_engine.storage.models import ALL_TABLES, CacheRow

logger = logging.getLogger(__name__)

_DEFAULT_CACHE_PATH = Path("data/summary_cache.db")
_IN_MEMORY = ":memory:"

_COLUMNS = (
    "email_id, fingerprint, headline, body, category, urgency, action_items, "
    "source, note, language_supported, truncated, created_at"
)


def fingerprint(
    body: str,
    model_version: str,
    length: SummaryLength = SummaryLength.SHORT,
) -> str:
    """Hex SHA-256 over the normalised content, model version and summary length.

    Any change to one of the three makes previously cached summaries stale.
    """
    digest = hashlib.sha256()
    for part in (model_version, length.value, body):
        encoded = part.encode("utf-8")
        # Length-prefix each part so field boundaries cannot be forged.
        digest.update(len(encoded).to_bytes(8, "big"))
        digest.update(encoded)
    return digest.hexdigest()


class FingerprintCache:
    """Wraps SQLite for the summary_cache table.

    A row is valid only while its stored fingerprint equals the one the caller
    recomputes from the current content; a mismatch evicts the row.  All calls
    are synchronous and fast enough to run on the event loop.

    Usage::

        cache = FingerprintCache(tmp_path / "cache.db")
        cache.put("42", fp, result)
        hit = cache.get("42", fp)
    """

    def __init__(self, db_path: str | Path = _DEFAULT_CACHE_PATH) -> None:
        if str(db_path) == _IN_MEMORY:
            self._conn = sqlite3.connect(_IN_MEMORY)
        else:
            path = Path(db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(path))
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.row_factory = sqlite3.Row
        self._create_tables()

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    # ── Read API ────────────────────────────────────────────────────────────────

    def get(
        self, email_id: str, current_fingerprint: str, evict: bool = True
    ) -> SummaryResult | None:
        """Return the cached result if its fingerprint is still current.

        A stale row is reported as a miss and, unless ``evict`` is False,
        deleted.
        """
        row = self.get_row(email_id)
        if row is None:
            return None
        if row.fingerprint != current_fingerprint:
            if evict:
                logger.debug("email=%s cache entry stale; evicting", email_id)
                self.invalidate(email_id)
            return None
        return _row_to_result(row)

    def get_row(self, email_id: str) -> CacheRow | None:
        """Return the raw cache row for email_id, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM summary_cache WHERE email_id = ?",
            (email_id,),
        ).fetchone()
        if row is None:
            return None
        d = dict(row)
        d["language_supported"] = bool(d["language_supported"])
        d["truncated"] = bool(d["truncated"])
        return CacheRow(**d)

    def count(self) -> int:
        """Number of cached summaries."""
        return self._conn.execute("SELECT COUNT(*) FROM summary_cache").fetchone()[0]

    # ── Write API ───────────────────────────────────────────────────────────────

    def put(self, email_id: str, fp: str, result: SummaryResult) -> None:
        """Store ``result`` under ``email_id``, replacing any previous entry."""
        summary = result.summary
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO summary_cache
                    (email_id, fingerprint, headline, body, category, urgency,
                     action_items, source, note, language_supported, truncated)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(email_id) DO UPDATE SET
                    fingerprint        = excluded.fingerprint,
                    headline           = excluded.headline,
                    body               = excluded.body,
                    category           = excluded.category,
                    urgency            = excluded.urgency,
                    action_items       = excluded.action_items,
                    source             = excluded.source,
                    note               = excluded.note,
                    language_supported = excluded.language_supported,
                    truncated          = excluded.truncated,
                    created_at         = datetime('now')
                """,
                (
                    email_id,
                    fp,
                    summary.headline,
                    summary.body,
                    summary.category.value,
                    summary.urgency.value,
                    json.dumps(list(summary.action_items)),
                    result.source.value,
                    result.note,
                    int(result.language_supported),
                    int(result.truncated),
                ),
            )
        logger.debug("email=%s cached (%s)", email_id, result.source.value)

    def invalidate(self, email_id: str) -> bool:
        """Remove the entry for email_id.  Returns True if a row was deleted."""
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM summary_cache WHERE email_id = ?", (email_id,)
            )
        return cursor.rowcount > 0

    def clear_all(self) -> int:
        """Remove every entry and return how many were deleted."""
        with self._conn:
            cursor = self._conn.execute("DELETE FROM summary_cache")
        logger.info("Cleared %d cached summar%s", cursor.rowcount, "y" if cursor.rowcount == 1 else "ies")
        return cursor.rowcount

    # ── Private ─────────────────────────────────────────────────────────────────

    def _create_tables(self) -> None:
        with self._conn:
            for ddl in ALL_TABLES:
                self._conn.execute(ddl)


def _row_to_result(row: CacheRow) -> SummaryResult:
    return SummaryResult(
        summary=Summary(
            headline=row.headline,
            body=row.body,
            category=Category(row.category),
            urgency=Urgency(row.urgency),
            action_items=tuple(json.loads(row.action_items)),
        ),
        source=SummarySource(row.source),
        note=row.note,
        language_supported=row.language_supported,
        truncated=row.truncated,
    )
