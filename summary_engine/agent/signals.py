"""Host pressure signals — thermal severity and low-memory notifications."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import IntEnum

import psutil
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


class ThermalState(IntEnum):
    """Ordered thermal severity scale."""

    NOMINAL = 0
    FAIR = 1
    SERIOUS = 2
    CRITICAL = 3

    @property
    def is_severe(self) -> bool:
        """True at the two highest levels, where batch work is deferred."""
        return self >= ThermalState.SERIOUS


ThermalListener = Callable[[ThermalState], None]
LowMemoryListener = Callable[[], None]


class HostSignals:
    """Injectable source of host pressure signals.

    The thermal state is level-triggered (listeners hear every change); the
    low-memory signal is edge-triggered (listeners hear each occurrence).
    Tests drive it directly; in production PsutilHostMonitor feeds it.
    """

    def __init__(self, thermal_state: ThermalState = ThermalState.NOMINAL) -> None:
        self._thermal_state = thermal_state
        self._thermal_listeners: list[ThermalListener] = []
        self._memory_listeners: list[LowMemoryListener] = []

    @property
    def thermal_state(self) -> ThermalState:
        return self._thermal_state

    def add_thermal_listener(self, listener: ThermalListener) -> None:
        self._thermal_listeners.append(listener)

    def add_low_memory_listener(self, listener: LowMemoryListener) -> None:
        self._memory_listeners.append(listener)

    def set_thermal_state(self, state: ThermalState) -> None:
        if state == self._thermal_state:
            return
        logger.info("Thermal state %s → %s", self._thermal_state.name, state.name)
        self._thermal_state = state
        for listener in list(self._thermal_listeners):
            listener(state)

    def signal_low_memory(self) -> None:
        logger.warning("Low-memory signal received")
        for listener in list(self._memory_listeners):
            listener()


# ── psutil-backed monitor ──────────────────────────────────────────────────────


def read_thermal_state() -> ThermalState:
    """Map the hottest sensor reading onto the thermal scale.

    Platforms without sensor support (macOS, Windows) report NOMINAL.
    """
    sensors = getattr(psutil, "sensors_temperatures", None)
    if sensors is None:
        return ThermalState.NOMINAL
    try:
        readings = sensors()
    except (OSError, RuntimeError) as exc:
        logger.debug("Temperature sensors unreadable: %s", exc)
        return ThermalState.NOMINAL

    worst = ThermalState.NOMINAL
    for entries in readings.values():
        for entry in entries:
            if entry.critical and entry.current >= entry.critical:
                level = ThermalState.CRITICAL
            elif entry.high and entry.current >= entry.high:
                level = ThermalState.SERIOUS
            elif entry.high and entry.current >= entry.high - 10:
                level = ThermalState.FAIR
            else:
                level = ThermalState.NOMINAL
            worst = max(worst, level)
    return worst


class PsutilHostMonitor:
    """Polls psutil on an APScheduler interval job and feeds HostSignals.

    Memory pressure fires once when usage crosses ``memory_threshold_percent``
    and re-arms only after usage drops back below it.

    The caller is responsible for calling start() and shutdown().
    """

    def __init__(
        self,
        signals: HostSignals,
        interval_seconds: float = 5.0,
        memory_threshold_percent: float = 90.0,
    ) -> None:
        self._signals = signals
        self._interval = interval_seconds
        self._threshold = memory_threshold_percent
        self._under_pressure = False
        self._scheduler = AsyncIOScheduler()
        # Coroutine job: listeners must run on the event loop thread.
        self._scheduler.add_job(
            self._poll_job,
            "interval",
            seconds=interval_seconds,
            id="host-signal-poll",
            max_instances=1,
            coalesce=True,
        )

    @property
    def scheduler(self) -> AsyncIOScheduler:
        return self._scheduler

    def start(self) -> None:
        self.poll()
        self._scheduler.start()
        logger.info("Host signal polling every %.1fs", self._interval)

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    async def _poll_job(self) -> None:
        self.poll()

    def poll(self) -> None:
        """Read sensors and memory once and update the signals."""
        self._signals.set_thermal_state(read_thermal_state())

        percent = psutil.virtual_memory().percent
        if percent >= self._threshold:
            if not self._under_pressure:
                self._under_pressure = True
                logger.warning("Memory usage %.0f%% ≥ %.0f%%", percent, self._threshold)
                self._signals.signal_low_memory()
        else:
            self._under_pressure = False
