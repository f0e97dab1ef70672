"""Availability monitor — tracks whether the inference capability is usable."""

from __future__ import annotations

import asyncio
import logging

from summary_engine.inference.capability import (
    AvailabilityState,
    InferenceCapability,
    UnavailableReason,
)

logger = logging.getLogger(__name__)

# Backoff: 2, 4, 8 … seconds, capped at one minute
_BASE_DELAY_SECONDS = 2.0
_MAX_BACKOFF_SECONDS = 60.0
_DEFAULT_MAX_ATTEMPTS = 6


class AvailabilityMonitor:
    """State machine over ``available`` / ``unavailable(reason)``.

    Transitions come only from polling the capability; a failed inference call
    never changes the recorded state.

    Usage::

        monitor = AvailabilityMonitor(capability)
        if not monitor.check_now().is_available:
            ready = await monitor.wait_until_available()
    """

    def __init__(
        self,
        capability: InferenceCapability,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        base_delay: float = _BASE_DELAY_SECONDS,
        max_delay: float = _MAX_BACKOFF_SECONDS,
    ) -> None:
        self._capability = capability
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._state: AvailabilityState | None = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> AvailabilityState | None:
        """Last polled state, or None before the first poll."""
        return self._state

    def check_now(self) -> AvailabilityState:
        """Poll the capability once and record the result."""
        try:
            state = self._capability.check_availability()
        except Exception as exc:  # noqa: BLE001
            logger.error("Availability check raised: %s", exc, exc_info=True)
            state = AvailabilityState.unavailable(UnavailableReason.OTHER)
        if state != self._state:
            logger.info("Inference capability %s → %s", self._state or "unknown", state)
            self._state = state
        return state

    def stop(self) -> None:
        """Abort any wait_until_available() in progress."""
        self._stop_event.set()

    async def wait_until_available(self, max_attempts: int | None = None) -> bool:
        """Poll with exponential backoff until available or the budget runs out.

        Makes at most ``max_attempts`` polls and sleeps only between polls.
        Returns True if the capability became available.  Honours stop() and
        task cancellation.
        """
        attempts = max_attempts if max_attempts is not None else self._max_attempts
        self._stop_event.clear()
        for attempt in range(1, attempts + 1):
            if self.check_now().is_available:
                return True
            if attempt == attempts or self._stop_event.is_set():
                break
            delay = self.backoff_delay(attempt)
            logger.info(
                "Model unavailable (attempt %d/%d): retrying in %.0fs",
                attempt,
                attempts,
                delay,
            )
            if await self._interruptible_sleep(delay):
                logger.info("Availability wait stopped")
                break
        return False

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failed poll (1-based)."""
        return min(self._base_delay * 2 ** (attempt - 1), self._max_delay)

    async def _interruptible_sleep(self, seconds: float) -> bool:
        """Sleep for `seconds`; return True if stop() woke us early."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
