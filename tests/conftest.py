"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest

from summary_engine.inference.capability import AvailabilityState
from summary_engine.processing.types import Category, PartialSummary, Summary, Urgency


def default_summary() -> Summary:
    return Summary(
        headline="Budget review needed by Friday",
        body="Alice asks the team to review the Q2 budget figures before Friday.",
        category=Category.ACTION_REQUIRED,
        urgency=Urgency.MEDIUM,
        action_items=("Review the Q2 budget",),
    )


def progressive(summary: Summary) -> list[PartialSummary]:
    """Snapshots the way a streaming model reveals a summary."""
    return [
        PartialSummary(headline=summary.headline[:6]),
        PartialSummary(headline=summary.headline),
        PartialSummary(headline=summary.headline, body=summary.body, category=summary.category),
        PartialSummary.of(summary),
    ]


class FakeCapability:
    """Deterministic stand-in for the on-device model.

    - ``availability``: states returned by successive polls; the last repeats.
    - ``respond_errors`` / ``stream_errors``: per-call outcomes, consumed in
      order (None means "succeed").
    - ``respond_results``: summaries returned by successive respond() calls,
      falling back to ``summary``.
    - ``gate``: when set, streams pause after their first snapshot until it
      is released.
    """

    def __init__(self, summary: Summary | None = None, model_version: str = "fake-model-1") -> None:
        self.model_version = model_version
        self.summary = summary or default_summary()
        self.partials: list[PartialSummary] | None = None
        self.availability: list[AvailabilityState] = [AvailabilityState.available()]
        self.respond_errors: list[Exception | None] = []
        self.stream_errors: list[Exception | None] = []
        self.respond_results: list[Summary] = []
        self.respond_prompts: list[str] = []
        self.stream_prompts: list[str] = []
        self.availability_calls = 0
        self.prewarm_calls = 0
        self.gate: asyncio.Event | None = None

    @property
    def call_count(self) -> int:
        return len(self.respond_prompts) + len(self.stream_prompts)

    def check_availability(self) -> AvailabilityState:
        self.availability_calls += 1
        if len(self.availability) > 1:
            return self.availability.pop(0)
        return self.availability[0]

    async def respond(self, prompt: str, schema: dict[str, Any]) -> Summary:
        self.respond_prompts.append(prompt)
        if self.respond_errors:
            error = self.respond_errors.pop(0)
            if error is not None:
                raise error
        if self.respond_results:
            return self.respond_results.pop(0)
        return self.summary

    async def stream_response(
        self, prompt: str, schema: dict[str, Any]
    ) -> AsyncIterator[PartialSummary]:
        self.stream_prompts.append(prompt)
        if self.stream_errors:
            error = self.stream_errors.pop(0)
            if error is not None:
                raise error
        for i, partial in enumerate(self.partials or progressive(self.summary)):
            yield partial
            if i == 0 and self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)

    def prewarm(self) -> None:
        self.prewarm_calls += 1


@pytest.fixture
def capability() -> FakeCapability:
    return FakeCapability()


@pytest.fixture
def summary() -> Summary:
    return default_summary()
