"""Tests for the telemetry session manager."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from dab_adb_bridge.dab.telemetry import FREQUENCY_ERROR, TelemetryKey, TelemetryManager
from dab_adb_bridge.errors import ConflictError, NotStartedError, ValidationError

METRICS = "dab/device-telemetry/metrics"


@pytest.fixture
def publish():
    return AsyncMock()


@pytest.fixture
def notify():
    return AsyncMock()


@pytest.fixture
def manager(publish, notify):
    return TelemetryManager(publish, METRICS, notify=notify)


def counting_producer():
    """Producer returning an increasing sample counter."""
    state = {"n": 0}

    async def produce():
        state["n"] += 1
        return {"sample": state["n"]}

    return produce


class TestTelemetryKey:
    def test_device_topic(self):
        assert TelemetryKey.device().metrics_topic(METRICS) == METRICS

    def test_application_topic(self):
        assert TelemetryKey.application("youtube").metrics_topic(METRICS) == f"{METRICS}/youtube"

    def test_keys_compare_by_value(self):
        assert TelemetryKey.application("youtube") == TelemetryKey.application("youtube")
        assert TelemetryKey.application("youtube") != TelemetryKey.device()

    def test_descriptions(self):
        assert str(TelemetryKey.device()) == "Device telemetry"
        assert str(TelemetryKey.application("netflix")) == "App telemetry for netflix"


class TestStart:
    """Test starting sessions."""

    @pytest.mark.asyncio
    async def test_first_sample_is_published_immediately(self, manager, publish):
        await manager.start(TelemetryKey.device(), 10_000, counting_producer())

        publish.assert_awaited_once_with(METRICS, {"sample": 1})
        assert manager.is_active(TelemetryKey.device())
        await manager.stop_all()

    @pytest.mark.asyncio
    async def test_samples_repeat_at_frequency(self, manager, publish):
        await manager.start(TelemetryKey.application("youtube"), 20, counting_producer())

        await asyncio.sleep(0.09)
        await manager.stop(TelemetryKey.application("youtube"))

        assert publish.await_count >= 3
        topics = {call.args[0] for call in publish.await_args_list}
        assert topics == {f"{METRICS}/youtube"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("frequency", [None, 0, -1, 1.5, "1000", True])
    async def test_invalid_frequency(self, manager, frequency):
        with pytest.raises(ValidationError, match=FREQUENCY_ERROR):
            await manager.start(TelemetryKey.device(), frequency, counting_producer())

        assert manager.active_sessions == []

    @pytest.mark.asyncio
    async def test_duplicate_start_conflicts(self, manager):
        await manager.start(TelemetryKey.device(), 10_000, counting_producer())

        with pytest.raises(ConflictError, match="Device telemetry is already started, stop it first"):
            await manager.start(TelemetryKey.device(), 10_000, counting_producer())
        await manager.stop_all()

    @pytest.mark.asyncio
    async def test_concurrent_starts_admit_one(self, manager):
        """Test the session key is reserved before the first sample is awaited."""
        results = await asyncio.gather(
            manager.start(TelemetryKey.device(), 10_000, counting_producer()),
            manager.start(TelemetryKey.device(), 10_000, counting_producer()),
            return_exceptions=True,
        )

        assert sum(result is None for result in results) == 1
        assert sum(isinstance(result, ConflictError) for result in results) == 1
        await manager.stop_all()

    @pytest.mark.asyncio
    async def test_first_sample_failure_fails_start(self, manager, publish):
        async def broken():
            raise RuntimeError("adb offline")

        with pytest.raises(RuntimeError, match="adb offline"):
            await manager.start(TelemetryKey.device(), 1000, broken)

        assert not manager.is_active(TelemetryKey.device())
        publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_during_first_sample_wins(self, manager, publish):
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return {"cpu": 1}

        start = asyncio.ensure_future(manager.start(TelemetryKey.device(), 20, slow))
        await asyncio.sleep(0)
        await manager.stop(TelemetryKey.device())
        release.set()
        await start

        await asyncio.sleep(0.06)
        assert publish.await_count == 1
        assert not manager.is_active(TelemetryKey.device())


class TestStop:
    """Test stopping sessions."""

    @pytest.mark.asyncio
    async def test_stop_unknown_session(self, manager):
        with pytest.raises(NotStartedError, match="App telemetry for youtube not started"):
            await manager.stop(TelemetryKey.application("youtube"))

    @pytest.mark.asyncio
    async def test_not_started_is_a_conflict(self):
        assert issubclass(NotStartedError, ConflictError)

    @pytest.mark.asyncio
    async def test_no_publish_after_stop(self, manager, publish):
        await manager.start(TelemetryKey.device(), 20, counting_producer())
        await manager.stop(TelemetryKey.device())
        count = publish.await_count

        await asyncio.sleep(0.06)

        assert publish.await_count == count

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_sample(self, manager, publish):
        """Test a sample being produced when stop is called never gets published."""
        sampling = asyncio.Event()
        state = {"n": 0}

        async def slow_producer():
            state["n"] += 1
            if state["n"] > 1:
                sampling.set()
                await asyncio.sleep(10)
            return {"sample": state["n"]}

        await manager.start(TelemetryKey.device(), 10, slow_producer)
        await sampling.wait()
        task = manager._sessions[TelemetryKey.device()].task

        await manager.stop(TelemetryKey.device())

        assert task.done()
        assert manager.active_sessions == []
        publish.assert_awaited_once_with(METRICS, {"sample": 1})

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, manager):
        await manager.start(TelemetryKey.device(), 10_000, counting_producer())
        await manager.stop(TelemetryKey.device())

        await manager.start(TelemetryKey.device(), 10_000, counting_producer())

        assert manager.active_sessions == [TelemetryKey.device()]
        await manager.stop_all()

    @pytest.mark.asyncio
    async def test_stop_all(self, manager):
        await manager.start(TelemetryKey.device(), 10_000, counting_producer())
        await manager.start(TelemetryKey.application("youtube"), 10_000, counting_producer())

        await manager.stop_all()

        assert manager.active_sessions == []


class TestDegradedSamples:
    """Test recurring sample failures."""

    @pytest.mark.asyncio
    async def test_failed_cycle_is_skipped_and_reported(self, manager, publish, notify):
        calls = {"n": 0}

        async def flaky():
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("top failed")
            return {"sample": calls["n"]}

        await manager.start(TelemetryKey.device(), 20, flaky)
        await asyncio.sleep(0.09)
        await manager.stop(TelemetryKey.device())

        published = [call.args[1] for call in publish.await_args_list]
        assert {"sample": 1} in published
        assert {"sample": 3} in published
        notify.assert_any_await("warn", "Degraded telemetry: Device telemetry failed to sample: top failed")

    @pytest.mark.asyncio
    async def test_session_info(self, manager):
        await manager.start(TelemetryKey.application("netflix"), 10_000, counting_producer())

        info = manager.get_session_info_list()

        assert len(info) == 1
        assert info[0]["kind"] == "application"
        assert info[0]["app_id"] == "netflix"
        assert info[0]["frequency_ms"] == 10_000
        assert info[0]["topic"] == f"{METRICS}/netflix"
        await manager.stop_all()
