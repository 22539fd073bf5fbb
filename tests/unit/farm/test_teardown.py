"""
Tests for SessionTeardown.

Covers:
- Cleanup: one request per Active worker, scoped to the project
- Unregistration: every worker closed, idempotent
- Failure mode: hung slaves are closed locally within the timeout
- Signal path: short timeout, running jobs failed
"""

import asyncio
import time

import pytest

from compilefarm.env import Env
from compilefarm.errors import DispatchRejectedError
from compilefarm.farm import (
    CapacityTracker,
    Dispatcher,
    SessionTeardown,
    WorkerRegistry,
)
from compilefarm.models import (
    CleanupRequest,
    Disconnect,
    JobState,
    SessionContext,
    WorkerState,
)

from tests.unit.farm.mocks import FakeSlaveFarm, compile_result


async def create_teardown(
    env: Env,
    context: SessionContext,
    declaration: str,
    farm: FakeSlaveFarm | None = None,
) -> tuple[FakeSlaveFarm, WorkerRegistry, Dispatcher, SessionTeardown]:
    farm = farm or FakeSlaveFarm()
    registry = WorkerRegistry(env, channel_factory=farm)
    registry.declare(declaration)

    dispatcher = Dispatcher(registry, CapacityTracker(registry), env)

    for worker in await registry.register_all(context):
        dispatcher.attach(worker)

    teardown = SessionTeardown(registry, dispatcher, env, context.build_env)

    return farm, registry, dispatcher, teardown


class TestCleanUp:
    """Test remote cleanup requests."""

    @pytest.mark.asyncio
    async def test_one_request_per_active_worker(
        self,
        env: Env,
        context: SessionContext,
    ):
        farm, registry, dispatcher, teardown = await create_teardown(
            env,
            context,
            "build1,build2,build3",
            farm=FakeSlaveFarm(unreachable={"build3"}),
        )

        # Several finished jobs per worker still mean a single request each
        for _ in range(2):
            job_ids = [
                await dispatcher.run("app", "ada", [], f"unit{index}.o", f"unit{index}.ali")
                for index in range(2)
            ]

            for job_id in job_ids:
                worker = dispatcher.get_job(job_id).worker
                farm.channels[worker].feed(compile_result(job_id))

            for _ in job_ids:
                await dispatcher.wait_completed(timeout=1)

        assert registry.get("build1").jobs_run == 2
        assert registry.get("build2").jobs_run == 2

        results = await teardown.clean_up("app")

        assert results == {"build1": True, "build2": True}

        for host in ("build1", "build2"):
            requests = farm.channels[host].sent_of(CleanupRequest)
            assert len(requests) == 1
            assert requests[0].project == "app"
            assert requests[0].build_env == "tester-app"

        assert registry.get("build1").state == WorkerState.ACTIVE

        await teardown.unregister_all()

    @pytest.mark.asyncio
    async def test_hung_worker_does_not_block_cleanup(
        self,
        env: Env,
        context: SessionContext,
    ):
        farm, _, _, teardown = await create_teardown(env, context, "build1,build2")
        farm.channels["build1"].hang_on_send = True

        results = await asyncio.wait_for(teardown.clean_up("app"), timeout=2)

        assert results == {"build1": False, "build2": True}

        await teardown.unregister_all()


class TestUnregisterAll:
    """Test disconnecting every worker."""

    @pytest.mark.asyncio
    async def test_every_worker_closed(self, env: Env, context: SessionContext):
        farm, registry, _, teardown = await create_teardown(
            env,
            context,
            "build1,build2,build3",
            farm=FakeSlaveFarm(unreachable={"build3"}),
        )

        assert await teardown.unregister_all()

        assert all(worker.state == WorkerState.CLOSED for worker in registry.workers())
        assert registry.lookup_channel("build1") is None

        for host in ("build1", "build2"):
            channel = farm.channels[host]
            assert len(channel.sent_of(Disconnect)) == 1
            assert channel.close_called

        report = teardown.report
        assert sorted(report.closed) == ["build1", "build2", "build3"]
        assert report.forced == []
        assert not report.from_signal

    @pytest.mark.asyncio
    async def test_second_call_is_a_no_op(self, env: Env, context: SessionContext):
        farm, _, _, teardown = await create_teardown(env, context, "build1")

        assert await teardown.unregister_all()
        assert not await teardown.unregister_all()
        assert not await teardown.unregister_all(from_signal=True)

        assert len(farm.channels["build1"].sent_of(Disconnect)) == 1
        assert teardown.torn_down

    @pytest.mark.asyncio
    async def test_concurrent_calls_tear_down_once(
        self,
        env: Env,
        context: SessionContext,
    ):
        farm, _, _, teardown = await create_teardown(env, context, "build1")

        results = await asyncio.gather(
            teardown.unregister_all(),
            teardown.unregister_all(from_signal=True),
        )

        assert sorted(results) == [False, True]
        assert len(farm.channels["build1"].sent_of(Disconnect)) == 1

    @pytest.mark.asyncio
    async def test_dispatch_rejected_after_teardown(
        self,
        env: Env,
        context: SessionContext,
    ):
        _, _, dispatcher, teardown = await create_teardown(env, context, "build1:2")

        await teardown.unregister_all()

        with pytest.raises(DispatchRejectedError):
            await dispatcher.run("app", "ada", [], "main.o", "main.ali")

    @pytest.mark.asyncio
    async def test_running_jobs_failed(self, env: Env, context: SessionContext):
        _, registry, dispatcher, teardown = await create_teardown(env, context, "build1:2")

        job_id = await dispatcher.run("app", "ada", [], "main.o", "main.ali")

        await teardown.unregister_all()

        job = dispatcher.get_job(job_id)
        assert job.state == JobState.FAILED
        assert job.reason == "build session torn down"
        assert registry.get("build1").outstanding == 0
        assert teardown.report.failed_jobs == 1


class TestSignalTeardown:
    """Test teardown triggered by an interrupt."""

    @pytest.mark.asyncio
    async def test_hung_worker_closed_locally_within_bound(
        self,
        env: Env,
        context: SessionContext,
    ):
        farm = FakeSlaveFarm()
        farm.channel_options["build1"] = {"hang_on_close": True}

        _, registry, _, teardown = await create_teardown(
            env,
            context,
            "build1,build2",
            farm=farm,
        )

        started = time.monotonic()
        await teardown.unregister_all(from_signal=True)
        elapsed = time.monotonic() - started

        # send, close and listener shutdown are each bounded by the signal timeout
        assert elapsed < 3 * env.signal_disconnect_timeout + 0.2

        assert registry.get("build1").state == WorkerState.CLOSED
        assert farm.channels["build1"].aborted
        assert teardown.report.forced == ["build1"]
        assert teardown.report.from_signal

    @pytest.mark.asyncio
    async def test_interrupt_shortens_teardown_in_flight(self, context: SessionContext):
        slow_env = Env(
            COMPILEFARM_LOCAL_PARALLELISM=2,
            COMPILEFARM_DISCONNECT_TIMEOUT="3s",
            COMPILEFARM_SIGNAL_DISCONNECT_TIMEOUT="0.1s",
            COMPILEFARM_LOG_LEVEL="critical",
        )

        farm, registry, _, teardown = await create_teardown(
            slow_env,
            context,
            "build1,build2",
        )
        farm.channels["build1"].hang_on_send = True

        asyncio.get_running_loop().call_later(0.05, teardown.interrupt)

        started = time.monotonic()
        assert await teardown.unregister_all()
        elapsed = time.monotonic() - started

        assert elapsed < 0.05 + 3 * slow_env.signal_disconnect_timeout + 0.2

        assert teardown.interrupted
        assert registry.get("build1").state == WorkerState.CLOSED
        assert farm.channels["build1"].aborted
        assert teardown.report.forced == ["build1"]
        assert teardown.report.from_signal

    @pytest.mark.asyncio
    async def test_interrupt_before_teardown_uses_signal_timeout(
        self,
        context: SessionContext,
    ):
        slow_env = Env(
            COMPILEFARM_LOCAL_PARALLELISM=2,
            COMPILEFARM_DISCONNECT_TIMEOUT="3s",
            COMPILEFARM_SIGNAL_DISCONNECT_TIMEOUT="0.1s",
            COMPILEFARM_LOG_LEVEL="critical",
        )

        farm, _, _, teardown = await create_teardown(slow_env, context, "build1")
        farm.channels["build1"].hang_on_send = True

        teardown.interrupt()

        started = time.monotonic()
        await teardown.unregister_all()
        elapsed = time.monotonic() - started

        assert elapsed < 3 * slow_env.signal_disconnect_timeout + 0.2
        assert teardown.report.from_signal

    @pytest.mark.asyncio
    async def test_signal_teardown_skips_lock(self, env: Env, context: SessionContext):
        _, registry, _, teardown = await create_teardown(env, context, "build1")

        async with registry.lock:
            done = await asyncio.wait_for(
                teardown.unregister_all(from_signal=True),
                timeout=1,
            )

        assert done
        assert registry.closing

    @pytest.mark.asyncio
    async def test_registering_worker_closed(self, env: Env, context: SessionContext):
        farm = FakeSlaveFarm(silent={"build1"})
        registry = WorkerRegistry(env, channel_factory=farm)
        registry.declare("build1")

        dispatcher = Dispatcher(registry, CapacityTracker(registry), env)
        teardown = SessionTeardown(registry, dispatcher, env, context.build_env)

        registration = asyncio.create_task(registry.register_all(context))
        await asyncio.sleep(0.05)

        assert registry.get("build1").state == WorkerState.REGISTERING

        await teardown.unregister_all(from_signal=True)
        await registration

        assert registry.get("build1").state == WorkerState.CLOSED
        assert farm.channels["build1"].aborted
