"""Tests for FingerprintCache — all tests use a temporary SQLite file."""

import sqlite3
from pathlib import Path

import pytest

from summary_engine.processing.types import (
    Category,
    Summary,
    SummaryLength,
    SummaryResult,
    SummarySource,
    Urgency,
)
from summary_engine.storage.cache import FingerprintCache, fingerprint


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_result(
    headline: str = "Budget review by Friday",
    source: SummarySource = SummarySource.MODEL,
    note: str | None = None,
    truncated: bool = False,
) -> SummaryResult:
    return SummaryResult(
        summary=Summary(
            headline=headline,
            body="Alice needs the Q2 budget reviewed.",
            category=Category.ACTION_REQUIRED,
            urgency=Urgency.HIGH,
            action_items=("Review the budget", "Reply to Alice"),
        ),
        source=source,
        note=note,
        truncated=truncated,
    )


FP = fingerprint("body text", "model-1")


@pytest.fixture
def cache(tmp_path: Path) -> FingerprintCache:
    c = FingerprintCache(tmp_path / "cache.db")
    yield c
    c.close()


# ── fingerprint ────────────────────────────────────────────────────────────────


class TestFingerprint:
    def test_deterministic(self) -> None:
        assert fingerprint("body", "m1") == fingerprint("body", "m1")
        assert len(fingerprint("body", "m1")) == 64

    def test_sensitive_to_body(self) -> None:
        assert fingerprint("body", "m1") != fingerprint("body!", "m1")

    def test_sensitive_to_model_version(self) -> None:
        assert fingerprint("body", "m1") != fingerprint("body", "m2")

    def test_sensitive_to_length(self) -> None:
        assert fingerprint("body", "m1", SummaryLength.SHORT) != fingerprint(
            "body", "m1", SummaryLength.FULL
        )

    def test_field_boundaries_matter(self) -> None:
        assert fingerprint("b", "ma") != fingerprint("ab", "m")


# ── get / put ──────────────────────────────────────────────────────────────────


class TestGetPut:
    def test_miss_on_empty(self, cache: FingerprintCache) -> None:
        assert cache.get("42", FP) is None

    def test_hit_returns_equal_result(self, cache: FingerprintCache) -> None:
        result = make_result(note="Language may be unsupported.", truncated=True)
        cache.put("42", FP, result)
        assert cache.get("42", FP) == result

    def test_stale_fingerprint_evicts(self, cache: FingerprintCache) -> None:
        cache.put("42", FP, make_result())
        assert cache.get("42", fingerprint("edited body", "model-1")) is None
        assert cache.get_row("42") is None
        assert cache.count() == 0

    def test_stale_lookup_without_eviction_keeps_row(self, cache: FingerprintCache) -> None:
        cache.put("42", FP, make_result())
        assert cache.get("42", fingerprint("body text", "model-2"), evict=False) is None
        assert cache.get_row("42") is not None
        assert cache.get("42", FP) == make_result()

    def test_put_overwrites(self, cache: FingerprintCache) -> None:
        cache.put("42", FP, make_result("old"))
        new_fp = fingerprint("new body", "model-1")
        cache.put("42", new_fp, make_result("new", source=SummarySource.FALLBACK))

        assert cache.count() == 1
        row = cache.get_row("42")
        assert row is not None
        assert row.fingerprint == new_fp
        assert row.headline == "new"
        assert row.source == "fallback"

    def test_row_fields(self, cache: FingerprintCache) -> None:
        cache.put("42", FP, make_result())
        row = cache.get_row("42")
        assert row is not None
        assert row.category == "action-required"
        assert row.urgency == "high"
        assert row.language_supported is True
        assert row.truncated is False
        assert row.created_at

    def test_survives_reopen(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "cache.db"
        first = FingerprintCache(path)
        first.put("42", FP, make_result())
        first.close()

        second = FingerprintCache(path)
        assert second.get("42", FP) == make_result()
        second.close()

    def test_uses_wal(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.db"
        FingerprintCache(path).close()
        conn = sqlite3.connect(str(path))
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        conn.close()


# ── invalidation ───────────────────────────────────────────────────────────────


class TestInvalidate:
    def test_invalidate_existing(self, cache: FingerprintCache) -> None:
        cache.put("42", FP, make_result())
        assert cache.invalidate("42") is True
        assert cache.get("42", FP) is None

    def test_invalidate_missing(self, cache: FingerprintCache) -> None:
        assert cache.invalidate("nope") is False

    def test_clear_all(self, cache: FingerprintCache) -> None:
        for email_id in ("1", "2", "3"):
            cache.put(email_id, FP, make_result())
        assert cache.clear_all() == 3
        assert cache.count() == 0


def test_in_memory_cache() -> None:
    cache = FingerprintCache(":memory:")
    cache.put("42", FP, make_result())
    assert cache.get("42", FP) == make_result()
    cache.close()
