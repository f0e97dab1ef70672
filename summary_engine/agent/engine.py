"""Summary engine — the caller-facing entry point that wires all components together."""

from __future__ import annotations

import asyncio
import logging

from summary_engine.agent.availability import AvailabilityMonitor
from summary_engine.agent.scheduler import Priority, RequestScheduler, SummaryHandle
from summary_engine.agent.signals import HostSignals, PsutilHostMonitor
from summary_engine.config import EngineConfig
from summary_engine.inference.capability import (
    AvailabilityState,
    InferenceCapability,
    UnavailableReason,
)
from summary_engine.inference.local_model import LocalModelCapability
from summary_engine.mail.types import EmailMessage
from summary_engine.processing.classifier import Outcome, resolve, unavailable_result
from summary_engine.processing.preprocessor import ContentMode, ContentPreprocessor
from summary_engine.processing.summarizer import HierarchicalSummarizer, PublishFn
from summary_engine.processing.types import SummaryLength, SummaryResult
from summary_engine.storage.cache import FingerprintCache, fingerprint

logger = logging.getLogger(__name__)

#: Model version recorded for summaries produced without the model.
RULE_BASED_VERSION = "rule-based"

# Waiting cannot help until the user or the hardware changes.
_FALLBACK_ONLY = frozenset(
    {UnavailableReason.DEVICE_NOT_SUPPORTED, UnavailableReason.APPLE_INTELLIGENCE_NOT_ENABLED}
)


class SummaryEngine:
    """Produces summaries for emails, one shared request per email id.

    ``request_summary`` returns a SummaryHandle immediately.  Low-content
    emails, cache hits and devices that can never run the model resolve
    without touching the scheduler; everything else is queued for the single
    inference slot.

    Usage::

        engine = SummaryEngine.from_config(EngineConfig.from_env())
        await engine.start()
        handle = await engine.request_summary(email)
        result = await handle.result()
        await engine.close()
    """

    def __init__(
        self,
        capability: InferenceCapability,
        cache: FingerprintCache,
        *,
        preprocessor: ContentPreprocessor | None = None,
        monitor: AvailabilityMonitor | None = None,
        signals: HostSignals | None = None,
        scheduler: RequestScheduler | None = None,
        summarizer: HierarchicalSummarizer | None = None,
        host_monitor: PsutilHostMonitor | None = None,
        default_length: SummaryLength = SummaryLength.SHORT,
    ) -> None:
        self._capability = capability
        self._cache = cache
        self._preprocessor = preprocessor or ContentPreprocessor()
        self._monitor = monitor or AvailabilityMonitor(capability)
        self._signals = signals or HostSignals()
        self._scheduler = scheduler or RequestScheduler(self._signals)
        self._summarizer = summarizer or HierarchicalSummarizer(capability)
        self._host_monitor = host_monitor
        self._default_length = default_length

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        capability: InferenceCapability | None = None,
        watch_host: bool = True,
    ) -> SummaryEngine:
        """Build an engine with every component tuned from ``config``.

        Without an explicit ``capability`` a LocalModelCapability is created,
        which raises ConfigError for a non-loopback endpoint.
        """
        if capability is None:
            capability = LocalModelCapability(config)

        signals = HostSignals()
        host_monitor = (
            PsutilHostMonitor(
                signals,
                interval_seconds=config.host_poll_interval,
                memory_threshold_percent=config.memory_pressure_percent,
            )
            if watch_host
            else None
        )
        return cls(
            capability,
            FingerprintCache(config.cache_path),
            preprocessor=ContentPreprocessor(
                chunk_overlap=config.chunk_overlap,
                thread_window=config.thread_window,
            ),
            monitor=AvailabilityMonitor(capability, max_attempts=config.backoff_attempts),
            signals=signals,
            scheduler=RequestScheduler(signals, max_concurrent=config.max_concurrent),
            summarizer=HierarchicalSummarizer(
                capability,
                call_timeout=config.call_timeout,
                retry_char_limit=config.retry_char_limit,
            ),
            host_monitor=host_monitor,
            default_length=config.summary_length,
        )

    # ── Properties ─────────────────────────────────────────────────────────────

    @property
    def signals(self) -> HostSignals:
        return self._signals

    @property
    def scheduler(self) -> RequestScheduler:
        return self._scheduler

    @property
    def availability(self) -> AvailabilityState | None:
        return self._monitor.state

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Begin host-signal polling, if configured."""
        if self._host_monitor is not None:
            self._host_monitor.start()

    async def close(self) -> None:
        """Cancel outstanding work and release the cache."""
        self._monitor.stop()
        if self._host_monitor is not None:
            self._host_monitor.shutdown()
        await self._scheduler.close()
        self._cache.close()
        logger.info("Summary engine closed")

    # ── Caller API ─────────────────────────────────────────────────────────────

    async def request_summary(
        self,
        email: EmailMessage,
        *,
        priority: Priority = Priority.USER,
        length: SummaryLength | None = None,
        force_refresh: bool = False,
    ) -> SummaryHandle:
        """Start (or join) summarization of ``email``.

        ``force_refresh`` skips the cache read and replaces any request for
        the same id that is already in flight.
        """
        length = length or self._default_length
        prepared = self._preprocessor.prepare(email)

        if prepared.mode is ContentMode.MINIMAL:
            logger.debug("email=%s low content; skipping inference", email.id)
            return SummaryHandle.completed(
                email.id, resolve(Outcome.LOW_CONTENT, email, prepared, length)
            )

        if force_refresh:
            self._scheduler.cancel(email.id)

        fp = fingerprint(prepared.content_key, self._capability.model_version, length)
        if not force_refresh:
            # The row may hold a rule-based summary that is still current for
            # a device without the model, so a mismatch is not evicted here.
            cached = self._cache.get(email.id, fp, evict=False)
            if cached is not None:
                logger.debug("email=%s cache hit", email.id)
                return SummaryHandle.completed(email.id, cached)

        state = await asyncio.to_thread(self._monitor.check_now)

        if state.reason in _FALLBACK_ONLY:
            rule_fp = fingerprint(prepared.content_key, RULE_BASED_VERSION, length)
            cached = None if force_refresh else self._cache.get(email.id, rule_fp)
            if cached is not None:
                return SummaryHandle.completed(email.id, cached)
            logger.info("email=%s %s; using rule-based summary", email.id, state)
            result = unavailable_result(email, prepared, length)
            self._cache.put(email.id, rule_fp, result)
            return SummaryHandle.completed(email.id, result)

        # Set by the work function when the model never became ready; such a
        # result says nothing about this content and is not stored.
        model_unavailable = False

        async def work(publish: PublishFn) -> SummaryResult:
            nonlocal model_unavailable
            current = self._monitor.state
            if current is None or not current.is_available:
                if not await self._monitor.wait_until_available():
                    logger.warning("email=%s model still unavailable; using fallback", email.id)
                    model_unavailable = True
                    return unavailable_result(email, prepared, length)
            return await self._summarizer.summarize(email, prepared, length, publish=publish)

        def store(result: SummaryResult) -> None:
            if not model_unavailable:
                self._cache.put(email.id, fp, result)

        return self._scheduler.submit(email.id, work, priority=priority, on_result=store)

    def invalidate(self, email_id: str) -> bool:
        """Drop the cached summary for ``email_id``."""
        return self._cache.invalidate(email_id)

    def clear_cache(self) -> int:
        """Drop every cached summary."""
        return self._cache.clear_all()
