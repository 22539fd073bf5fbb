"""
Build Session - The context object that owns one build's slave pool.

A BuildSession is created by the build driver and handed to whatever
needs the pool. It owns the registry, the capacity tracker, the
dispatcher and the teardown for exactly one build, so independent
sessions can coexist in one process.

Signal handling is deliberately minimal: SIGINT and SIGTERM only set
the session's cancellation event. ``run`` observes that event on the
normal execution path, cancels the driver and tears the pool down with
the short signal timeouts. A signal that lands while the session is
already shutting down skips whatever cleanup is left and cuts the
teardown in flight down to the same timeouts.
"""

from __future__ import annotations

import asyncio
import os
import signal
import uuid
from typing import Any, Coroutine, TypeVar

from compilefarm.channels import TCPChannel
from compilefarm.env import Env, load_env
from compilefarm.farm import (
    CapacityTracker,
    ChannelFactory,
    Dispatcher,
    SessionTeardown,
    WorkerRegistry,
    resolve_declaration,
)
from compilefarm.farm.logging_models import SessionInfo, SessionWarning
from compilefarm.logging import Logger, LoggingConfig
from compilefarm.models import Job, SessionContext, Worker
from compilefarm.paths import Project, ProjectPaths

T = TypeVar("T")

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class BuildSession:
    def __init__(
        self,
        project: Project,
        env: Env | None = None,
        channel_factory: ChannelFactory | None = None,
        local_parallelism: int | None = None,
        build_env: str | None = None,
        clean_on_exit: bool = True,
    ) -> None:
        if env is None:
            env = load_env(Env)

        if channel_factory is None:
            channel_factory = TCPChannel.connect

        self.session_id = uuid.uuid4().hex[:12]
        self.env = env
        self.log_path = os.path.join(
            env.COMPILEFARM_LOGS_DIRECTORY,
            env.COMPILEFARM_LOG_FILE,
        )
        self._logger = Logger(path=self.log_path)

        self.project = project
        self.paths = ProjectPaths(project)
        self.context = SessionContext.create(
            project,
            self.paths,
            build_env=build_env or env.COMPILEFARM_BUILD_ENV,
        )

        self.registry = WorkerRegistry(
            env,
            channel_factory=channel_factory,
            local_parallelism=local_parallelism,
            session_id=self.session_id,
            logger=self._logger,
        )
        self.capacity = CapacityTracker(self.registry)
        self.dispatcher = Dispatcher(
            self.registry,
            self.capacity,
            env,
            session_id=self.session_id,
            logger=self._logger,
        )
        self.teardown = SessionTeardown(
            self.registry,
            self.dispatcher,
            env,
            self.context.build_env,
            session_id=self.session_id,
            logger=self._logger,
        )

        self._clean_on_exit = clean_on_exit
        self._cancelled = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._installed_signals: list[signal.Signals] = []

        logging_config = LoggingConfig()
        logging_config.update(
            log_directory=env.COMPILEFARM_LOGS_DIRECTORY,
            log_level=env.COMPILEFARM_LOG_LEVEL,
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    # =========================================================================
    # Pool Lifecycle
    # =========================================================================

    def declare(self, declaration: str | None = None) -> list[Worker]:
        """
        Declare slaves from an explicit declaration, the project's
        remote build slaves, or the environment, in that order. A
        session without any declaration builds locally only.
        """
        resolved = resolve_declaration(
            self.env,
            declaration=declaration,
            project_slaves=self.project.remote_build_slaves,
        )

        if resolved is None:
            return []

        return self.registry.declare(resolved)

    async def register(self) -> list[Worker]:
        activated = await self.registry.register_all(self.context)

        for worker in activated:
            self.dispatcher.attach(worker)

        await self._log_info(
            f"{len(activated)} slaves active, total capacity {self.capacity.total_capacity()}"
        )

        return activated

    async def dispatch(
        self,
        language: str,
        options: list[str],
        obj_name: str,
        dep_name: str,
        env: dict[str, str] | None = None,
        project: str | None = None,
    ) -> int:
        return await self.dispatcher.run(
            project or self.project.name,
            language,
            options,
            obj_name,
            dep_name,
            env=env,
        )

    async def wait_completed(self, timeout: float | None = None) -> Job | None:
        return await self.dispatcher.wait_completed(timeout=timeout)

    async def clean_up(self, project: str | None = None) -> dict[str, bool]:
        return await self.teardown.clean_up(project or self.project.name)

    async def shutdown(
        self,
        from_signal: bool = False,
        clean: bool | None = None,
    ) -> bool:
        if clean is None:
            clean = self._clean_on_exit

        from_signal = from_signal or self.cancelled

        if clean and not from_signal and not self.teardown.torn_down:
            await self._clean_up_until_cancelled()

        return await self.teardown.unregister_all(from_signal=from_signal)

    async def _clean_up_until_cancelled(self) -> dict[str, bool] | None:
        cleanup = asyncio.ensure_future(self.clean_up())
        cancel_waiter = asyncio.ensure_future(self._cancelled.wait())

        try:
            await asyncio.wait(
                {cleanup, cancel_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )

            if cleanup.done():
                return cleanup.result()

            await self._log_warning("Interrupted during cleanup, skipping remaining requests")
            return None

        finally:
            cancel_waiter.cancel()

            if not cleanup.done():
                cleanup.cancel()

    # =========================================================================
    # Signals
    # =========================================================================

    def install_signal_handlers(self) -> None:
        self._loop = asyncio.get_running_loop()

        for sig in HANDLED_SIGNALS:
            self._loop.add_signal_handler(sig, self.abort)
            self._installed_signals.append(sig)

    def remove_signal_handlers(self) -> None:
        if self._loop is None:
            return

        for sig in self._installed_signals:
            self._loop.remove_signal_handler(sig)

        self._installed_signals.clear()

    def abort(self) -> None:
        """Signal handler body. Only flips the cancellation events."""
        self._cancelled.set()
        self.teardown.interrupt()

    async def run(self, driver: Coroutine[Any, Any, T]) -> T | None:
        """
        Run the build driver until it finishes or the session is
        cancelled, then tear the pool down. Returns the driver's result,
        or None if the session was cancelled.
        """
        driver_task = asyncio.ensure_future(driver)
        cancel_waiter = asyncio.ensure_future(self._cancelled.wait())

        try:
            await asyncio.wait(
                {driver_task, cancel_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )

            if not driver_task.done():
                await self._log_warning("Build interrupted, tearing down slaves")

                driver_task.cancel()

                # the driver unwinds while the pool is torn down
                await asyncio.gather(
                    asyncio.wait(
                        {driver_task},
                        timeout=self.env.signal_disconnect_timeout,
                    ),
                    self.shutdown(from_signal=True),
                )

                return None

            result = driver_task.result()
            await self.shutdown()

            return result

        finally:
            cancel_waiter.cancel()

            if not driver_task.done():
                driver_task.cancel()

            if not self.teardown.torn_down:
                await self.teardown.unregister_all(from_signal=self.cancelled)

    async def __aenter__(self) -> BuildSession:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            await self.teardown.unregister_all(
                from_signal=self.cancelled or exc_type is asyncio.CancelledError
            )

        finally:
            self.remove_signal_handlers()
            await self._logger.close()

    # =========================================================================
    # Logging Helpers
    # =========================================================================

    def _get_log_context(self) -> dict:
        return {
            "session_id": self.session_id,
            "project": self.project.name,
            "build_env": self.context.build_env,
        }

    async def _log_info(self, message: str) -> None:
        await self._logger.log(SessionInfo(message=message, **self._get_log_context()))

    async def _log_warning(self, message: str) -> None:
        await self._logger.log(SessionWarning(message=message, **self._get_log_context()))
