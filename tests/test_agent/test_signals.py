"""Tests for HostSignals and the psutil-backed host monitor."""

import asyncio
import inspect
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from summary_engine.agent.signals import (
    HostSignals,
    PsutilHostMonitor,
    ThermalState,
    read_thermal_state,
)


def sensor(current: float, high: float | None = 80.0, critical: float | None = 100.0) -> SimpleNamespace:
    return SimpleNamespace(label="core", current=current, high=high, critical=critical)


class TestThermalState:
    def test_ordering(self) -> None:
        assert ThermalState.NOMINAL < ThermalState.FAIR < ThermalState.SERIOUS < ThermalState.CRITICAL

    @pytest.mark.parametrize(
        "state,severe",
        [
            (ThermalState.NOMINAL, False),
            (ThermalState.FAIR, False),
            (ThermalState.SERIOUS, True),
            (ThermalState.CRITICAL, True),
        ],
    )
    def test_is_severe(self, state: ThermalState, severe: bool) -> None:
        assert state.is_severe is severe


class TestHostSignals:
    def test_thermal_listeners_hear_changes_only(self) -> None:
        signals = HostSignals()
        heard: list[ThermalState] = []
        signals.add_thermal_listener(heard.append)

        signals.set_thermal_state(ThermalState.SERIOUS)
        signals.set_thermal_state(ThermalState.SERIOUS)
        signals.set_thermal_state(ThermalState.NOMINAL)

        assert heard == [ThermalState.SERIOUS, ThermalState.NOMINAL]
        assert signals.thermal_state is ThermalState.NOMINAL

    def test_low_memory_listeners_hear_every_signal(self) -> None:
        signals = HostSignals()
        listener = MagicMock()
        signals.add_low_memory_listener(listener)
        signals.signal_low_memory()
        signals.signal_low_memory()
        assert listener.call_count == 2


class TestReadThermalState:
    def _read(self, readings: dict[str, list[SimpleNamespace]]) -> ThermalState:
        psutil_mock = MagicMock()
        psutil_mock.sensors_temperatures.return_value = readings
        with patch("summary_engine.agent.signals.psutil", psutil_mock):
            return read_thermal_state()

    def test_cool(self) -> None:
        assert self._read({"cpu": [sensor(45.0)]}) is ThermalState.NOMINAL

    def test_near_high_is_fair(self) -> None:
        assert self._read({"cpu": [sensor(75.0)]}) is ThermalState.FAIR

    def test_at_high_is_serious(self) -> None:
        assert self._read({"cpu": [sensor(85.0)]}) is ThermalState.SERIOUS

    def test_at_critical(self) -> None:
        assert self._read({"cpu": [sensor(101.0)]}) is ThermalState.CRITICAL

    def test_hottest_sensor_wins(self) -> None:
        readings = {"cpu": [sensor(40.0)], "gpu": [sensor(90.0)]}
        assert self._read(readings) is ThermalState.SERIOUS

    def test_missing_thresholds_are_nominal(self) -> None:
        assert self._read({"acpi": [sensor(95.0, high=None, critical=None)]}) is ThermalState.NOMINAL

    def test_platform_without_sensors(self) -> None:
        psutil_mock = MagicMock(spec=[])
        with patch("summary_engine.agent.signals.psutil", psutil_mock):
            assert read_thermal_state() is ThermalState.NOMINAL


class TestPsutilHostMonitor:
    def _poll(self, monitor: PsutilHostMonitor, percent: float) -> None:
        psutil_mock = MagicMock()
        psutil_mock.virtual_memory.return_value = SimpleNamespace(percent=percent)
        with patch("summary_engine.agent.signals.psutil", psutil_mock), patch(
            "summary_engine.agent.signals.read_thermal_state", return_value=ThermalState.FAIR
        ):
            monitor.poll()

    def test_registers_interval_job(self) -> None:
        monitor = PsutilHostMonitor(HostSignals(), interval_seconds=7)
        job = monitor.scheduler.get_job("host-signal-poll")
        assert job is not None
        assert job.trigger.interval.total_seconds() == 7

    def test_poll_updates_thermal_state(self) -> None:
        signals = HostSignals()
        self._poll(PsutilHostMonitor(signals), 40.0)
        assert signals.thermal_state is ThermalState.FAIR

    def test_memory_pressure_is_edge_triggered(self) -> None:
        signals = HostSignals()
        listener = MagicMock()
        signals.add_low_memory_listener(listener)
        monitor = PsutilHostMonitor(signals, memory_threshold_percent=90.0)

        self._poll(monitor, 95.0)
        self._poll(monitor, 96.0)
        assert listener.call_count == 1

        self._poll(monitor, 50.0)
        self._poll(monitor, 92.0)
        assert listener.call_count == 2

    async def test_scheduled_poll_signals_on_loop_thread(self) -> None:
        signals = HostSignals()
        threads: list[threading.Thread] = []
        signals.add_low_memory_listener(lambda: threads.append(threading.current_thread()))
        monitor = PsutilHostMonitor(signals, interval_seconds=0.05, memory_threshold_percent=90.0)

        psutil_mock = MagicMock()
        psutil_mock.virtual_memory.return_value = SimpleNamespace(percent=50.0)
        with patch("summary_engine.agent.signals.psutil", psutil_mock), patch(
            "summary_engine.agent.signals.read_thermal_state", return_value=ThermalState.NOMINAL
        ):
            monitor.start()
            try:
                # Pressure appears only after start(), so the scheduled job reports it.
                psutil_mock.virtual_memory.return_value = SimpleNamespace(percent=99.0)
                for _ in range(100):
                    if threads:
                        break
                    await asyncio.sleep(0.02)
            finally:
                monitor.shutdown()

        assert threads == [threading.current_thread()]

    def test_job_is_a_coroutine(self) -> None:
        job = PsutilHostMonitor(HostSignals()).scheduler.get_job("host-signal-poll")
        assert inspect.iscoroutinefunction(job.func)
