"""
Session Teardown - Remote cleanup and slave disconnection.

Teardown runs once per session. The first call to unregister_all sets
the torn-down flag before doing anything else, so later calls (including
one racing the first) return immediately.

Every per-slave await is bounded by a timeout and slaves are handled
concurrently, so one hung slave cannot hold up the others. A slave that
does not answer in time is closed locally.

An interrupt arriving while a normal teardown is in flight cuts every
remaining wait down to the signal timeout.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, TypeVar

from compilefarm.env import Env
from compilefarm.errors import ChannelError
from compilefarm.logging import Logger
from compilefarm.models import CleanupRequest, Disconnect, Worker, WorkerState

from .dispatcher import Dispatcher
from .logging_models import TeardownDebug, TeardownInfo, TeardownWarning
from .registry import WorkerRegistry

T = TypeVar("T")


@dataclass
class TeardownReport:
    """Outcome of the teardown that actually ran."""

    from_signal: bool
    closed: list[str] = field(default_factory=list)
    forced: list[str] = field(default_factory=list)
    failed_jobs: int = 0


class SessionTeardown:
    def __init__(
        self,
        registry: WorkerRegistry,
        dispatcher: Dispatcher,
        env: Env,
        build_env: str,
        session_id: str = "",
        logger: Logger | None = None,
    ) -> None:
        self._registry = registry
        self._dispatcher = dispatcher
        self._env = env
        self._build_env = build_env
        self._session_id = session_id
        self._logger = logger or Logger()

        self._torn_down = False
        self._interrupted = asyncio.Event()
        self._report: TeardownReport | None = None

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    @property
    def interrupted(self) -> bool:
        return self._interrupted.is_set()

    @property
    def report(self) -> TeardownReport | None:
        return self._report

    def interrupt(self) -> None:
        """Switch any teardown in flight, or still to come, to the signal path."""
        self._interrupted.set()

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def clean_up(self, project: str) -> dict[str, bool]:
        """
        Ask every Active slave to delete the artifacts and synced
        sources of a project. Returns host -> whether the request was
        sent. Connection states are left untouched.
        """
        workers = self._registry.active_workers()

        results = await asyncio.gather(
            *[self._send_cleanup(worker, project) for worker in workers]
        )

        return {worker.host: sent for worker, sent in zip(workers, results)}

    async def _send_cleanup(self, worker: Worker, project: str) -> bool:
        channel = worker.channel
        if channel is None:
            return False

        try:
            await asyncio.wait_for(
                channel.send(
                    CleanupRequest(
                        project=project,
                        build_env=self._build_env,
                    )
                ),
                timeout=self._env.cleanup_timeout,
            )

        except (ChannelError, asyncio.TimeoutError) as err:
            await self._log_warning(
                f"Cleanup request for {project} not delivered to {worker.host}: {str(err) or 'timed out'}",
                worker.host,
            )

            return False

        await self._log_debug(f"Requested cleanup of {project}", worker.host)
        return True

    # =========================================================================
    # Unregistration
    # =========================================================================

    async def unregister_all(self, from_signal: bool = False) -> bool:
        """
        Disconnect and close every slave. Returns True if this call did
        the teardown, False if it had already been done.

        With from_signal, or once interrupted, the shorter signal timeout
        applies and the registry lock is not waited on.
        """
        if self._torn_down:
            return False

        self._torn_down = True
        from_signal = from_signal or self._interrupted.is_set()

        if from_signal:
            self._registry.begin_closing()

        else:
            async with self._registry.lock:
                self._registry.begin_closing()

        timeout = (
            self._env.signal_disconnect_timeout
            if from_signal
            else self._env.disconnect_timeout
        )

        report = TeardownReport(from_signal=from_signal)

        workers = [
            worker
            for worker in self._registry.workers()
            if worker.state != WorkerState.CLOSED
        ]

        results = await asyncio.gather(
            *[self._disconnect(worker, timeout, from_signal) for worker in workers]
        )

        for worker, (graceful, failed_jobs) in zip(workers, results):
            report.closed.append(worker.host)
            report.failed_jobs += failed_jobs

            if not graceful:
                report.forced.append(worker.host)

        if self._interrupted.is_set():
            timeout = min(timeout, self._env.signal_disconnect_timeout)
            report.from_signal = True

        await self._dispatcher.close(timeout=timeout)

        self._report = report

        for worker in workers:
            await self._log_info(
                f"Slave {worker.host} closed after running {worker.jobs_run} jobs",
                worker.host,
                from_signal=report.from_signal,
            )

        return True

    async def _disconnect(
        self,
        worker: Worker,
        timeout: float,
        from_signal: bool,
    ) -> tuple[bool, int]:
        self._dispatcher.detach(worker)

        channel = worker.channel
        worker.channel = None
        self._registry.transition(worker, WorkerState.DRAINING)

        graceful = True

        if channel is not None:
            try:
                await self._wait_bounded(channel.send(Disconnect()), timeout)
                await self._wait_bounded(channel.close(), timeout)

            except (ChannelError, asyncio.TimeoutError, OSError) as err:
                graceful = False
                channel.abort()

                await self._log_warning(
                    f"Slave {worker.host} did not disconnect cleanly, closed locally: {str(err) or 'timed out'}",
                    worker.host,
                    from_signal=from_signal,
                )

        self._registry.transition(worker, WorkerState.CLOSED)

        failed = self._dispatcher.fail_jobs(
            worker.host,
            "build session torn down",
        )

        return graceful, len(failed)

    async def _wait_bounded(self, awaitable: Awaitable[T], timeout: float) -> T:
        """
        Like asyncio.wait_for, except that an interrupt arriving mid-wait
        leaves at most the signal timeout for the awaitable to finish.
        """
        task = asyncio.ensure_future(awaitable)
        interrupted = asyncio.ensure_future(self._interrupted.wait())

        try:
            await asyncio.wait(
                {task, interrupted},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if not task.done() and interrupted.done():
                await asyncio.wait(
                    {task},
                    timeout=self._env.signal_disconnect_timeout,
                )

            if not task.done():
                raise asyncio.TimeoutError()

            return task.result()

        finally:
            interrupted.cancel()

            if not task.done():
                task.cancel()

    # =========================================================================
    # Logging Helpers
    # =========================================================================

    def _get_log_context(self, host: str, from_signal: bool) -> dict:
        return {
            "session_id": self._session_id,
            "host": host,
            "from_signal": from_signal,
        }

    async def _log_debug(
        self,
        message: str,
        host: str,
        from_signal: bool = False,
    ) -> None:
        await self._logger.log(
            TeardownDebug(message=message, **self._get_log_context(host, from_signal))
        )

    async def _log_info(
        self,
        message: str,
        host: str,
        from_signal: bool = False,
    ) -> None:
        await self._logger.log(
            TeardownInfo(message=message, **self._get_log_context(host, from_signal))
        )

    async def _log_warning(
        self,
        message: str,
        host: str,
        from_signal: bool = False,
    ) -> None:
        await self._logger.log(
            TeardownWarning(message=message, **self._get_log_context(host, from_signal))
        )
