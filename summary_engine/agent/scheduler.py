"""Request scheduler — single point of admission control over the inference slot."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from summary_engine.agent.signals import HostSignals, ThermalState
from summary_engine.processing.summarizer import PublishFn
from summary_engine.processing.types import PartialSummary, SummaryResult

logger = logging.getLogger(__name__)

THERMAL_NOTE = "Summarization slowed to protect your device due to thermal conditions."

# How often a dispatcher with only deferred work re-reads the thermal signal.
_THERMAL_RECHECK_SECONDS = 5.0


class Priority(str, Enum):
    """USER requests are never thermally deferred; BATCH requests are."""

    USER = "user"
    BATCH = "batch"


class RequestCancelled(Exception):
    """The request was cancelled before producing a result."""

    def __init__(self, email_id: str) -> None:
        super().__init__(f"summary request for {email_id!r} was cancelled")
        self.email_id = email_id


# ── Events & handles ───────────────────────────────────────────────────────────


class EventKind(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SummaryEvent:
    """One item in a handle's stream: partials, then exactly one terminal event."""

    kind: EventKind
    partial: PartialSummary | None = None
    result: SummaryResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind is not EventKind.PARTIAL


_CANCELLED = SummaryEvent(EventKind.CANCELLED)

#: The unit of work admitted into the slot; receives a callback for partials.
WorkFn = Callable[[PublishFn], Awaitable[SummaryResult]]
ResultHook = Callable[[SummaryResult], None]


class SummaryHandle:
    """A caller's view of a (possibly shared) summarization request.

    Iterate it to receive partial snapshots followed by one FINAL or CANCELLED
    event, or ``await handle.result()`` for just the outcome.  A handle's
    event stream can be consumed once.

    Usage::

        handle = await engine.request_summary(email)
        async for event in handle:
            if event.kind is EventKind.PARTIAL:
                render(event.partial)
        result = await handle.result()
    """

    def __init__(
        self,
        email_id: str,
        outcome: asyncio.Future[SummaryEvent],
        canceller: Callable[[], None] | None = None,
    ) -> None:
        self.email_id = email_id
        self._outcome = outcome
        self._events: asyncio.Queue[SummaryEvent] = asyncio.Queue()
        self._canceller = canceller

    @classmethod
    def completed(cls, email_id: str, result: SummaryResult) -> SummaryHandle:
        """A handle that is already resolved (cache hit, low-content email)."""
        outcome: asyncio.Future[SummaryEvent] = asyncio.get_running_loop().create_future()
        event = SummaryEvent(EventKind.FINAL, result=result)
        outcome.set_result(event)
        handle = cls(email_id, outcome)
        handle._push(event)
        return handle

    @property
    def done(self) -> bool:
        return self._outcome.done()

    def __aiter__(self) -> AsyncIterator[SummaryEvent]:
        return self.events()

    async def events(self) -> AsyncIterator[SummaryEvent]:
        while True:
            event = await self._events.get()
            yield event
            if event.is_terminal:
                return

    async def result(self) -> SummaryResult:
        """Wait for the terminal result.

        Raises:
            RequestCancelled: if the request was cancelled.
        """
        event = await asyncio.shield(self._outcome)
        if event.kind is EventKind.CANCELLED or event.result is None:
            raise RequestCancelled(self.email_id)
        return event.result

    def cancel(self) -> None:
        """Cancel the shared request (affects every subscriber)."""
        if self._canceller is not None and not self.done:
            self._canceller()

    def _push(self, event: SummaryEvent) -> None:
        self._events.put_nowait(event)


class InflightRequest:
    """The single shared in-progress request for one email id."""

    def __init__(
        self,
        email_id: str,
        work: WorkFn,
        priority: Priority,
        on_result: ResultHook | None,
    ) -> None:
        self.email_id = email_id
        self.work = work
        self.priority = priority
        self.on_result = on_result
        self.outcome: asyncio.Future[SummaryEvent] = asyncio.get_running_loop().create_future()
        self.task: asyncio.Task[None] | None = None
        self.cancel_requested = False
        self.thermal_degraded = False
        self.slot_released = False
        self._latest: PartialSummary | None = None
        self._subscribers: list[SummaryHandle] = []

    @property
    def started(self) -> bool:
        return self.task is not None

    @property
    def finished(self) -> bool:
        return self.outcome.done()

    def subscribe(self, canceller: Callable[[], None]) -> SummaryHandle:
        handle = SummaryHandle(self.email_id, self.outcome, canceller)
        if self.finished:
            handle._push(self.outcome.result())
            return handle
        if self._latest is not None:
            # Late joiners start from the newest snapshot.
            handle._push(SummaryEvent(EventKind.PARTIAL, partial=self._latest))
        self._subscribers.append(handle)
        return handle

    def publish(self, partial: PartialSummary) -> None:
        if self.finished or self.cancel_requested:
            return
        self._latest = partial
        event = SummaryEvent(EventKind.PARTIAL, partial=partial)
        for handle in self._subscribers:
            handle._push(event)

    def finish(self, event: SummaryEvent) -> None:
        """Resolve every subscriber exactly once; later calls are no-ops."""
        if self.finished:
            return
        self.outcome.set_result(event)
        for handle in self._subscribers:
            handle._push(event)
        self._subscribers.clear()


# ── Scheduler ──────────────────────────────────────────────────────────────────


class RequestScheduler:
    """Serializes and deduplicates work against the single inference resource.

    - One InflightRequest per email id; duplicate submissions attach to it.
    - ``max_concurrent`` slots (default 1); an admitted request holds its slot
      until it completes, streaming included.
    - FIFO admission, except that BATCH work waits while the thermal state is
      SERIOUS or CRITICAL.
    - A low-memory signal cancels everything queued but not yet started.

    Must be used from within a running event loop.  The dict and queue are
    only touched from synchronous sections of the loop, so check-then-insert
    cannot interleave with another submission.
    """

    def __init__(
        self,
        signals: HostSignals | None = None,
        max_concurrent: int = 1,
        thermal_recheck_seconds: float = _THERMAL_RECHECK_SECONDS,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._signals = signals or HostSignals()
        self._slot = asyncio.Semaphore(max_concurrent)
        self._recheck = thermal_recheck_seconds
        self._inflight: dict[str, InflightRequest] = {}
        self._queue: deque[InflightRequest] = deque()
        self._running: set[InflightRequest] = set()
        self._wakeup = asyncio.Event()
        self._dispatcher: asyncio.Task[None] | None = None
        self._signals.add_thermal_listener(self._on_thermal_change)
        self._signals.add_low_memory_listener(self.cancel_queued)

    # ── Introspection ──────────────────────────────────────────────────────────

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def active_count(self) -> int:
        return len(self._running)

    def is_inflight(self, email_id: str) -> bool:
        return email_id in self._inflight

    # ── Admission ──────────────────────────────────────────────────────────────

    def submit(
        self,
        email_id: str,
        work: WorkFn,
        *,
        priority: Priority = Priority.USER,
        on_result: ResultHook | None = None,
    ) -> SummaryHandle:
        """Queue ``work`` for ``email_id``, or attach to the request already in flight.

        ``on_result`` runs with the result of a completed, non-cancelled
        request before subscribers are resolved.
        """
        existing = self._inflight.get(email_id)
        if existing is not None:
            logger.debug("email=%s already in flight; attaching subscriber", email_id)
            return existing.subscribe(lambda: self._cancel_request(existing))

        request = InflightRequest(email_id, work, priority, on_result)
        self._inflight[email_id] = request
        self._queue.append(request)
        handle = request.subscribe(lambda: self._cancel_request(request))
        logger.debug(
            "email=%s queued (%s); %d pending", email_id, priority.value, len(self._queue)
        )
        self._ensure_dispatcher()
        self._wakeup.set()
        return handle

    def cancel(self, email_id: str) -> bool:
        """Cancel the request for ``email_id``.  Returns False if none exists."""
        request = self._inflight.get(email_id)
        if request is None:
            return False
        self._cancel_request(request)
        return True

    def cancel_queued(self) -> int:
        """Cancel every request that has not started; the running ones continue."""
        cancelled = list(self._queue)
        self._queue.clear()
        for request in cancelled:
            self._complete(request, _CANCELLED)
        if cancelled:
            logger.warning("Cancelled %d queued request(s)", len(cancelled))
        return len(cancelled)

    async def close(self) -> None:
        """Stop dispatching and cancel all outstanding work."""
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None
        self.cancel_queued()
        tasks = [r.task for r in self._running if r.task is not None]
        for request in list(self._running):
            self._cancel_request(request)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Internal ───────────────────────────────────────────────────────────────

    def _cancel_request(self, request: InflightRequest) -> None:
        if request.finished:
            return
        if not request.started:
            try:
                self._queue.remove(request)
            except ValueError:
                pass
            logger.info("email=%s cancelled before start", request.email_id)
            self._complete(request, _CANCELLED)
            return
        # Best effort: interrupt the running call; if it completes anyway the
        # result is discarded rather than cached.  Subscribers are released
        # now and a new submission for the id starts a fresh request.
        logger.info("email=%s cancelling running request", request.email_id)
        request.cancel_requested = True
        self._complete(request, _CANCELLED)
        if request.task is not None:
            request.task.cancel()

    def _complete(self, request: InflightRequest, event: SummaryEvent) -> None:
        if self._inflight.get(request.email_id) is request:
            del self._inflight[request.email_id]
        request.finish(event)

    def _on_thermal_change(self, state: ThermalState) -> None:
        self._wakeup.set()

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.get_running_loop().create_task(self._dispatch())

    async def _dispatch(self) -> None:
        while True:
            await self._slot.acquire()
            try:
                request = await self._next_admissible()
            except BaseException:
                self._slot.release()
                raise
            request.thermal_degraded = (
                request.priority is Priority.USER and self._signals.thermal_state.is_severe
            )
            self._running.add(request)
            request.task = asyncio.get_running_loop().create_task(self._execute(request))
            request.task.add_done_callback(lambda _t, r=request: self._on_task_done(r))

    async def _next_admissible(self) -> InflightRequest:
        while True:
            self._wakeup.clear()
            request = self._pick()
            if request is not None:
                return request
            timeout = self._recheck if self._queue else None
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    def _pick(self) -> InflightRequest | None:
        severe = self._signals.thermal_state.is_severe
        for request in self._queue:
            if request.priority is Priority.USER or not severe:
                self._queue.remove(request)
                return request
        if self._queue:
            logger.debug(
                "Thermal state %s: deferring %d batch request(s)",
                self._signals.thermal_state.name,
                len(self._queue),
            )
        return None

    async def _execute(self, request: InflightRequest) -> None:
        logger.debug("email=%s admitted", request.email_id)
        try:
            result = await request.work(request.publish)
        except asyncio.CancelledError:
            self._complete(request, _CANCELLED)
            raise
        except Exception:  # noqa: BLE001
            logger.error("email=%s work function raised", request.email_id, exc_info=True)
            self._complete(request, _CANCELLED)
            return

        if request.cancel_requested:
            logger.info("email=%s completed after cancellation; result discarded", request.email_id)
            self._complete(request, _CANCELLED)
            return

        if request.on_result is not None:
            try:
                request.on_result(result)
            except Exception as exc:  # noqa: BLE001
                logger.error("email=%s result hook failed: %s", request.email_id, exc, exc_info=True)
        # The thermal advisory describes this delivery only, so it is added
        # after the result hook has stored the result.
        if request.thermal_degraded:
            result = result.with_note(THERMAL_NOTE)
        self._complete(request, SummaryEvent(EventKind.FINAL, result=result))

    def _on_task_done(self, request: InflightRequest) -> None:
        # Also covers a task cancelled before its first step, where _execute
        # never ran.
        self._complete(request, _CANCELLED)
        self._running.discard(request)
        if not request.slot_released:
            request.slot_released = True
            self._slot.release()
        self._wakeup.set()
