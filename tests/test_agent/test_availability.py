"""Tests for AvailabilityMonitor — backoff sleeps are mocked out."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, call

import pytest

from summary_engine.agent.availability import AvailabilityMonitor
from summary_engine.inference.capability import AvailabilityState, UnavailableReason

NOT_READY = AvailabilityState.unavailable(UnavailableReason.MODEL_NOT_READY)
AVAILABLE = AvailabilityState.available()


@pytest.fixture
def monitor(capability) -> AvailabilityMonitor:
    m = AvailabilityMonitor(capability)
    m._interruptible_sleep = AsyncMock(return_value=False)  # type: ignore[method-assign]
    return m


class TestCheckNow:
    def test_records_state(self, monitor: AvailabilityMonitor, capability) -> None:
        assert monitor.state is None
        capability.availability = [NOT_READY]
        assert monitor.check_now() == NOT_READY
        assert monitor.state == NOT_READY

    def test_capability_exception_is_other(self, monitor: AvailabilityMonitor, capability) -> None:
        capability.check_availability = MagicMock(side_effect=RuntimeError("probe"))
        assert monitor.check_now().reason is UnavailableReason.OTHER


class TestWaitUntilAvailable:
    async def test_immediately_available_never_sleeps(self, monitor: AvailabilityMonitor) -> None:
        assert await monitor.wait_until_available() is True
        monitor._interruptible_sleep.assert_not_called()  # type: ignore[attr-defined]

    async def test_backoff_2_then_4_seconds(self, monitor: AvailabilityMonitor, capability) -> None:
        capability.availability = [NOT_READY, NOT_READY, AVAILABLE]
        assert await monitor.wait_until_available() is True
        assert monitor._interruptible_sleep.call_args_list == [call(2.0), call(4.0)]  # type: ignore[attr-defined]
        assert capability.availability_calls == 3

    async def test_gives_up_after_budget_without_final_sleep(
        self, monitor: AvailabilityMonitor, capability
    ) -> None:
        capability.availability = [NOT_READY]
        assert await monitor.wait_until_available(max_attempts=4) is False
        assert capability.availability_calls == 4
        assert monitor._interruptible_sleep.call_args_list == [  # type: ignore[attr-defined]
            call(2.0), call(4.0), call(8.0)
        ]

    async def test_default_budget_is_six_polls(self, monitor: AvailabilityMonitor, capability) -> None:
        capability.availability = [NOT_READY]
        assert await monitor.wait_until_available() is False
        assert capability.availability_calls == 6

    async def test_stop_interrupts_wait(self, monitor: AvailabilityMonitor, capability) -> None:
        capability.availability = [NOT_READY]
        monitor._interruptible_sleep = AsyncMock(return_value=True)  # type: ignore[method-assign]
        assert await monitor.wait_until_available() is False
        assert capability.availability_calls == 1

    async def test_real_sleep_wakes_on_stop(self, capability) -> None:
        capability.availability = [NOT_READY]
        monitor = AvailabilityMonitor(capability)
        task = asyncio.create_task(monitor.wait_until_available())
        await asyncio.sleep(0.01)
        monitor.stop()
        assert await asyncio.wait_for(task, timeout=1) is False

    async def test_cancellation_propagates(self, capability) -> None:
        capability.availability = [NOT_READY]
        monitor = AvailabilityMonitor(capability)
        task = asyncio.create_task(monitor.wait_until_available())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestBackoffDelay:
    def test_doubles(self, monitor: AvailabilityMonitor) -> None:
        assert [monitor.backoff_delay(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]

    def test_capped_at_one_minute(self, monitor: AvailabilityMonitor) -> None:
        assert monitor.backoff_delay(10) == 60.0
