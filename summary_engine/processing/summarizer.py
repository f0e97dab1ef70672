"""Hierarchical summarizer — single-call, map-reduce and thread-fold strategies."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TypeVar

from summary_engine.inference.capability import (
    ContextWindowExceeded,
    GuardrailViolation,
    InferenceCapability,
    InferenceError,
)
from summary_engine.mail.types import EmailMessage
from summary_engine.processing.classifier import Outcome, classify_failure, resolve
from summary_engine.processing.fallback import first_sentences
from summary_engine.processing.preprocessor import (
    RETRY_CHAR_LIMIT,
    ContentMode,
    PreparedContent,
    truncate_for_retry,
)
from summary_engine.processing.prompts import (
    SUMMARY_TOOL,
    build_chunk_prompt,
    build_fold_prompt,
    build_prompt,
    build_reduce_prompt,
)
from summary_engine.processing.types import (
    PartialSummary,
    Summary,
    SummaryLength,
    SummaryResult,
)

logger = logging.getLogger(__name__)

#: Receives each monotonic partial snapshot as it is produced.
PublishFn = Callable[[PartialSummary], None]

DEFAULT_CALL_TIMEOUT = 30.0

T = TypeVar("T")


# ── Monotonic merge ────────────────────────────────────────────────────────────


def _merge_text(previous: str | None, new: str | None) -> str | None:
    if previous is None:
        return new
    if new is not None and new.startswith(previous):
        return new
    return previous


def _merge_items(previous: tuple[str, ...], new: tuple[str, ...]) -> tuple[str, ...]:
    if len(new) < len(previous):
        return previous
    if not previous:
        return new
    # Every completed item must be unchanged; the last one may still be growing.
    if new[: len(previous) - 1] != previous[:-1]:
        return previous
    if not new[len(previous) - 1].startswith(previous[-1]):
        return previous
    return new


def merge_monotonic(previous: PartialSummary, new: PartialSummary) -> PartialSummary:
    """Fold ``new`` into ``previous`` without contradicting revealed fields.

    Category and urgency are fixed once revealed, text fields may only grow by
    extension, and action items may only be appended (the last one may still
    be growing).  Anything else in ``new`` is ignored.
    """
    return PartialSummary(
        headline=_merge_text(previous.headline, new.headline),
        body=_merge_text(previous.body, new.body),
        category=previous.category if previous.category is not None else new.category,
        urgency=previous.urgency if previous.urgency is not None else new.urgency,
        action_items=_merge_items(previous.action_items, new.action_items),
    )


# ── Summarizer ─────────────────────────────────────────────────────────────────


@dataclass
class _Run:
    """Per-request state threaded through the strategy methods."""

    email: EmailMessage
    prepared: PreparedContent
    length: SummaryLength
    publish: PublishFn | None
    retried: bool = False


class HierarchicalSummarizer:
    """Drives one or more inference calls to summarize a prepared email.

    Every call is bounded by ``call_timeout``.  A context-length overflow gets
    exactly one retry with a prompt cut to ``retry_char_limit`` characters;
    every other failure resolves straight to a placeholder result.

    Usage::

        summarizer = HierarchicalSummarizer(capability)
        result = await summarizer.summarize(email, prepared, publish=print)
    """

    def __init__(
        self,
        capability: InferenceCapability,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        retry_char_limit: int = RETRY_CHAR_LIMIT,
    ) -> None:
        self._capability = capability
        self._call_timeout = call_timeout
        self._retry_char_limit = retry_char_limit

    async def summarize(
        self,
        email: EmailMessage,
        prepared: PreparedContent,
        length: SummaryLength = SummaryLength.SHORT,
        publish: PublishFn | None = None,
    ) -> SummaryResult:
        """Summarize ``prepared`` and classify the outcome.  Never raises
        except for ``asyncio.CancelledError``."""
        if prepared.mode is ContentMode.MINIMAL:
            return resolve(Outcome.LOW_CONTENT, email, prepared, length)

        run = _Run(email=email, prepared=prepared, length=length, publish=publish)
        self._prewarm()
        try:
            running = None if prepared.thread_chunks else await self._fold_thread(run)
            if prepared.mode is ContentMode.CHUNKED:
                summary = await self._map_reduce(run, running)
            else:
                summary = await self._single(run, running)
        except (InferenceError, asyncio.TimeoutError) as exc:
            return classify_failure(exc, email, prepared, length)
        except Exception as exc:  # noqa: BLE001
            logger.error("email=%s unexpected summarization error", email.id, exc_info=True)
            return classify_failure(exc, email, prepared, length)

        result = resolve(Outcome.SUCCESS, email, prepared, length, summary=summary)
        if run.retried:
            result = replace(result, truncated=True)
        return result

    # ── Strategies ─────────────────────────────────────────────────────────────

    async def _single(self, run: _Run, running: str | None) -> Summary:
        text = run.prepared.text
        prompt = build_prompt(
            run.email, text, run.length,
            truncated=run.prepared.truncated, running_summary=running,
        )
        retry_prompt = build_prompt(
            run.email, truncate_for_retry(text, self._retry_char_limit), run.length,
            truncated=True, running_summary=running,
        )
        return await self._stream(run, prompt, retry_prompt)

    async def _map_reduce(self, run: _Run, running: str | None) -> Summary:
        """Summarize each chunk in order, then reduce the part summaries.

        Category and urgency of the result come from the reduce call only.
        """
        chunks = run.prepared.chunks
        total = len(chunks)
        part_summaries: list[str] = []
        for chunk in chunks:
            thread = run.prepared.thread_chunks
            prompt = build_chunk_prompt(run.email, chunk.text, chunk.index, total, thread=thread)
            retry_prompt = build_chunk_prompt(
                run.email,
                truncate_for_retry(chunk.text, self._retry_char_limit),
                chunk.index,
                total,
                thread=thread,
            )
            try:
                part = await self._respond(run, prompt, retry_prompt)
                part_summaries.append(f"{part.headline} {part.body}".strip())
            except GuardrailViolation:
                raise
            except (InferenceError, asyncio.TimeoutError) as exc:
                # Keep the reduce input aligned with the chunk order.
                logger.warning(
                    "email=%s chunk %d/%d failed (%s); using extract",
                    run.email.id,
                    chunk.index + 1,
                    total,
                    type(exc).__name__,
                )
                part_summaries.append(first_sentences(chunk.text, 2))

        logger.debug("email=%s reducing %d part summaries", run.email.id, total)
        prompt = build_reduce_prompt(run.email, part_summaries, run.length, running_summary=running)
        budget = max(40, self._retry_char_limit // max(total, 1))
        retry_prompt = build_reduce_prompt(
            run.email,
            [truncate_for_retry(s, budget) for s in part_summaries],
            run.length,
            running_summary=running,
        )
        return await self._stream(run, prompt, retry_prompt)

    async def _fold_thread(self, run: _Run) -> str | None:
        """Fold older thread messages into a running summary, oldest first.

        A failed fold step is skipped; a guardrail rejection is not.
        """
        running: str | None = None
        for position, body in enumerate(run.prepared.thread_context, start=1):
            prompt = build_fold_prompt(run.email, body, running)
            retry_prompt = build_fold_prompt(
                run.email, truncate_for_retry(body, self._retry_char_limit), running
            )
            try:
                folded = await self._respond(run, prompt, retry_prompt)
            except GuardrailViolation:
                raise
            except (InferenceError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "email=%s thread fold step %d failed (%s); skipping",
                    run.email.id,
                    position,
                    type(exc).__name__,
                )
                continue
            running = folded.body
        return running

    # ── Calls ──────────────────────────────────────────────────────────────────

    async def _respond(self, run: _Run, prompt: str, retry_prompt: str) -> Summary:
        return await self._with_overflow_retry(
            run,
            lambda: self._capability.respond(prompt, SUMMARY_TOOL),
            retry_prompt,
        )

    async def _stream(self, run: _Run, prompt: str, retry_prompt: str) -> Summary:
        # The retry uses a plain respond() so no partial published after it can
        # contradict one published before the overflow.
        return await self._with_overflow_retry(
            run,
            lambda: self._consume_stream(prompt, run.publish),
            retry_prompt,
        )

    async def _with_overflow_retry(
        self,
        run: _Run,
        call: Callable[[], Awaitable[Summary]],
        retry_prompt: str,
    ) -> Summary:
        try:
            return await self._bounded(call())
        except ContextWindowExceeded:
            logger.info(
                "email=%s context window exceeded; retrying once with %d-char prompt body",
                run.email.id,
                self._retry_char_limit,
            )
        run.retried = True
        return await self._bounded(self._capability.respond(retry_prompt, SUMMARY_TOOL))

    async def _consume_stream(self, prompt: str, publish: PublishFn | None) -> Summary:
        merged = PartialSummary()
        async for snapshot in self._capability.stream_response(prompt, SUMMARY_TOOL):
            updated = merge_monotonic(merged, snapshot)
            if updated != merged:
                merged = updated
                if publish is not None:
                    publish(merged)
        if not merged.is_complete:
            raise InferenceError("stream ended before the summary was complete")
        return merged.complete()

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self._call_timeout)

    def _prewarm(self) -> None:
        try:
            self._capability.prewarm()
        except Exception as exc:  # noqa: BLE001
            logger.debug("prewarm hint failed: %s", exc)
