"""Tests for the readiness poller."""

import asyncio
import time

import pytest
from fluxenv.core.errors import ReadinessError, ResourceNotFoundError
from fluxenv.models import NamespacedName, ReadinessStatus
from fluxenv.readiness import ReadinessPoller

APPS = NamespacedName("flux-system", "apps")
INFRA = NamespacedName("flux-system", "infra")


class ScriptedProbe:
    """Returns scripted answers per resource; the last answer repeats."""

    def __init__(self, script):
        self.script = {k: list(v) for k, v in script.items()}
        self.calls = []

    async def __call__(self, resource):
        self.calls.append(resource)
        answers = self.script[resource]
        answer = answers.pop(0) if len(answers) > 1 else answers[0]
        if isinstance(answer, BaseException):
            raise answer
        return answer


class TestPoll:
    @pytest.mark.asyncio
    async def test_ready_on_first_check(self):
        probe = ScriptedProbe({APPS: [True]})
        poller = ReadinessPoller(probe, interval=0.01)

        result = await poller.poll(APPS)

        assert result.ready
        assert probe.calls == [APPS]

    @pytest.mark.asyncio
    async def test_not_found_is_tolerated(self):
        probe = ScriptedProbe(
            {APPS: [ResourceNotFoundError(APPS), ResourceNotFoundError(APPS), False, True]}
        )
        poller = ReadinessPoller(probe, interval=0.01)

        result = await poller.poll(APPS, timeout=5)

        assert result.status is ReadinessStatus.READY
        assert len(probe.calls) == 4

    @pytest.mark.asyncio
    async def test_probe_error_is_reported(self):
        probe = ScriptedProbe({APPS: [RuntimeError("api down")]})
        poller = ReadinessPoller(probe, interval=0.01)

        result = await poller.poll(APPS, timeout=5)

        assert result.status is ReadinessStatus.ERROR
        assert "api down" in str(result.error)

    @pytest.mark.asyncio
    async def test_timeout_reports_cancelled_within_an_interval(self):
        probe = ScriptedProbe({APPS: [False]})
        poller = ReadinessPoller(probe, interval=0.05)

        started = time.monotonic()
        result = await poller.poll(APPS, timeout=0.2)
        elapsed = time.monotonic() - started

        assert result.status is ReadinessStatus.CANCELLED
        assert elapsed < 0.2 + 0.05 + 0.2


class TestWaitReady:
    @pytest.mark.asyncio
    async def test_all_ready(self):
        probe = ScriptedProbe({APPS: [False, True], INFRA: [True]})
        poller = ReadinessPoller(probe, interval=0.01)

        results = await poller.wait_ready(APPS, INFRA, timeout=5)

        assert [r.resource for r in results] == [APPS, INFRA]
        assert all(r.ready for r in results)

    @pytest.mark.asyncio
    async def test_no_resources(self):
        poller = ReadinessPoller(ScriptedProbe({}), interval=0.01)

        assert await poller.wait_ready() == []

    @pytest.mark.asyncio
    async def test_error_names_resource_and_namespace(self):
        probe = ScriptedProbe({APPS: [True], INFRA: [RuntimeError("boom")]})
        poller = ReadinessPoller(probe, interval=0.01)

        with pytest.raises(ReadinessError) as exc_info:
            await poller.wait_ready(APPS, INFRA, timeout=5)

        message = str(exc_info.value)
        assert "infra" in message
        assert "flux-system" in message
        assert "boom" in message
        assert len(exc_info.value.errors) == 1

    @pytest.mark.asyncio
    async def test_timeout_fails_only_the_slow_resource(self):
        probe = ScriptedProbe({APPS: [True], INFRA: [False]})
        poller = ReadinessPoller(probe, interval=0.01)
        seen = []

        with pytest.raises(ReadinessError) as exc_info:
            await poller.wait_ready(APPS, INFRA, timeout=0.1, observer=seen.append)

        assert len(exc_info.value.errors) == 1
        assert "timed out" in str(exc_info.value)
        statuses = {r.resource: r.status for r in seen}
        assert statuses == {APPS: ReadinessStatus.READY, INFRA: ReadinessStatus.CANCELLED}

    @pytest.mark.asyncio
    async def test_observer_sees_results_as_they_finish(self):
        probe = ScriptedProbe({APPS: [False, False, False, True], INFRA: [True]})
        poller = ReadinessPoller(probe, interval=0.01)
        seen = []

        await poller.wait_ready(APPS, INFRA, timeout=5, observer=seen.append)

        assert [r.resource for r in seen] == [INFRA, APPS]

    @pytest.mark.asyncio
    async def test_duplicates_polled_once(self):
        probe = ScriptedProbe({APPS: [True]})
        poller = ReadinessPoller(probe, interval=0.01)

        results = await poller.wait_ready(APPS, APPS, APPS)

        assert len(results) == 1
        assert probe.calls == [APPS]

    @pytest.mark.asyncio
    async def test_outer_cancellation_stops_polling(self):
        probe = ScriptedProbe({APPS: [False], INFRA: [False]})
        poller = ReadinessPoller(probe, interval=0.01)

        task = asyncio.create_task(poller.wait_ready(APPS, INFRA))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        calls = len(probe.calls)
        await asyncio.sleep(0.05)
        assert len(probe.calls) == calls
