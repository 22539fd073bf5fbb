"""
Dispatcher - Places compilation jobs on compile slaves.

Selection and slot reservation happen atomically under the registry
lock, so the outstanding count of a worker can never pass its slot
count. Sending the compile request happens outside the lock; the job
id is returned as soon as the request is on the wire.

Completion is delivered by one listener task per Active worker that
reads compile results from the worker's channel. A channel failure
drops the worker and fails every job still running on it.
"""

import asyncio
import itertools

from compilefarm.env import Env
from compilefarm.errors import (
    CapacityInvariantError,
    ChannelError,
    DispatchRejectedError,
)
from compilefarm.logging import Logger
from compilefarm.models import (
    CompileRequest,
    CompileResult,
    Job,
    JobState,
    Worker,
)

from .capacity import CapacityTracker
from .logging_models import DispatcherDebug, DispatcherError, DispatcherWarning
from .registry import WorkerRegistry
from .state_machine import JobStateMachine


class Dispatcher:
    def __init__(
        self,
        registry: WorkerRegistry,
        tracker: CapacityTracker,
        env: Env,
        session_id: str = "",
        logger: Logger | None = None,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self._env = env
        self._session_id = session_id
        self._logger = logger or Logger()

        self._jobs: dict[int, Job] = {}
        self._job_ids = itertools.count(1)
        self._completed: asyncio.Queue[Job] = asyncio.Queue()
        self._listeners: dict[str, asyncio.Task] = {}

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def run(
        self,
        project: str,
        language: str,
        options: list[str],
        obj_name: str,
        dep_name: str,
        env: dict[str, str] | None = None,
    ) -> int:
        """
        Send a compilation to the least loaded slave with a free slot.

        The caller must have checked that a remote slot is free.
        Raises CapacityInvariantError if none is, and
        DispatchRejectedError once teardown has begun.
        """
        async with self._registry.lock:
            if self._registry.closing:
                raise DispatchRejectedError(
                    f"Session is shutting down, refusing to compile {obj_name}"
                )

            worker = self._tracker.select_worker()
            if worker is None:
                raise CapacityInvariantError(
                    f"No slave has a free slot for {obj_name} "
                    f"({self._tracker.outstanding()} of {self._tracker.remote_capacity()} remote slots in use)"
                )

            job = Job(
                next(self._job_ids),
                worker.host,
                project,
                language,
                list(options),
                obj_name,
                dep_name,
                env=dict(env or {}),
            )

            worker.outstanding += 1
            self._jobs[job.job_id] = job
            channel = worker.channel

        JobStateMachine.transition(job, JobState.RUNNING)

        try:
            await asyncio.wait_for(
                channel.send(
                    CompileRequest(
                        job_id=job.job_id,
                        project=job.project,
                        language=job.language,
                        options=job.options,
                        obj_name=job.obj_name,
                        dep_name=job.dep_name,
                        env=job.env,
                    )
                ),
                timeout=self._env.request_timeout,
            )

        except (ChannelError, asyncio.TimeoutError) as err:
            reason = str(err) or "timed out sending compile request"
            await self._log_error(
                f"Could not send {job.obj_name} to {worker.host}: {reason}",
                worker,
                job.job_id,
            )

            await self._lose_worker(worker, reason)

            if not job.done:
                job.reason = reason
                self._finish(job, worker, JobState.FAILED)

            return job.job_id

        worker.jobs_run += 1

        await self._log_debug(
            f"Dispatched {job.obj_name} to {worker.host}",
            worker,
            job.job_id,
        )

        return job.job_id

    # =========================================================================
    # Completion
    # =========================================================================

    async def complete(self, host: str, result: CompileResult) -> Job | None:
        """
        Apply a compile result received from a slave. Results for
        unknown or finished jobs, or from the wrong slave, are ignored.
        """
        job = self._jobs.get(result.job_id)
        worker = self._registry.get(host)

        if job is None or job.done or job.worker != host or worker is None:
            await self._logger.log(
                DispatcherWarning(
                    message=f"Ignoring result for job {result.job_id} from {host}",
                    session_id=self._session_id,
                    host=host,
                    job_id=result.job_id,
                    outstanding=worker.outstanding if worker else 0,
                    slots=worker.slots if worker else 0,
                )
            )

            return None

        job.exit_status = result.exit_status
        job.output = result.output
        job.artifacts = list(result.artifacts)

        if result.success:
            self._finish(job, worker, JobState.COMPLETED)

        else:
            job.reason = f"compilation failed with status {result.exit_status}"
            self._finish(job, worker, JobState.FAILED)

        await self._log_debug(
            f"Job {job.job_id} ({job.obj_name}) {job.state.value} on {host}",
            worker,
            job.job_id,
        )

        return job

    def fail_jobs(self, host: str, reason: str) -> list[Job]:
        """Fail every unfinished job placed on a host and release its slots."""
        worker = self._registry.get(host)

        failed: list[Job] = []
        for job in self._jobs.values():
            if job.worker == host and not job.done:
                job.reason = reason
                self._finish(job, worker, JobState.FAILED)
                failed.append(job)

        return failed

    def _finish(self, job: Job, worker: Worker | None, state: JobState) -> None:
        JobStateMachine.transition(job, state)

        if worker is not None and worker.outstanding > 0:
            worker.outstanding -= 1

        self._completed.put_nowait(job)

    async def wait_completed(self, timeout: float | None = None) -> Job | None:
        """Next finished job, or None if none finishes within timeout."""
        try:
            return await asyncio.wait_for(self._completed.get(), timeout=timeout)

        except asyncio.TimeoutError:
            return None

    def get_job(self, job_id: int) -> Job | None:
        return self._jobs.get(job_id)

    def jobs(self) -> list[Job]:
        return list(self._jobs.values())

    def running_jobs(self, host: str | None = None) -> list[Job]:
        return [
            job
            for job in self._jobs.values()
            if not job.done and (host is None or job.worker == host)
        ]

    # =========================================================================
    # Listeners
    # =========================================================================

    def attach(self, worker: Worker) -> None:
        """Start reading compile results from an Active worker."""
        if worker.channel is None or worker.host in self._listeners:
            return

        self._listeners[worker.host] = asyncio.create_task(
            self._listen(worker, worker.channel),
            name=f"compilefarm-listener-{worker.host}",
        )

    def detach(self, worker: Worker) -> asyncio.Task | None:
        task = self._listeners.pop(worker.host, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

        return task

    async def close(self, timeout: float | None = None) -> None:
        tasks = [
            task
            for task in self._listeners.values()
            if task is not asyncio.current_task()
        ]

        self._listeners.clear()

        for task in tasks:
            task.cancel()

        if len(tasks) > 0:
            await asyncio.wait(tasks, timeout=timeout)

    async def _listen(self, worker: Worker, channel) -> None:
        while True:
            try:
                message = await channel.receive()

            except ChannelError as err:
                if worker.channel is channel:
                    await self._lose_worker(worker, str(err) or "connection lost")

                return

            if isinstance(message, CompileResult):
                await self.complete(worker.host, message)
                continue

            await self._lose_worker(
                worker,
                f"protocol violation: unexpected {type(message).__name__}",
            )

            return

    async def _lose_worker(self, worker: Worker, reason: str) -> None:
        dropped = await self._registry.drop(worker, reason)
        self.detach(worker)

        if not dropped:
            return

        failed = self.fail_jobs(worker.host, f"slave {worker.host} lost: {reason}")

        for job in failed:
            await self._log_error(
                f"Compilation of {job.obj_name} failed: {job.reason}",
                worker,
                job.job_id,
            )

    # =========================================================================
    # Logging Helpers
    # =========================================================================

    def _get_log_context(self, worker: Worker, job_id: int) -> dict:
        return {
            "session_id": self._session_id,
            "host": worker.host,
            "job_id": job_id,
            "outstanding": worker.outstanding,
            "slots": worker.slots,
        }

    async def _log_debug(self, message: str, worker: Worker, job_id: int) -> None:
        await self._logger.log(
            DispatcherDebug(message=message, **self._get_log_context(worker, job_id))
        )

    async def _log_error(self, message: str, worker: Worker, job_id: int) -> None:
        await self._logger.log(
            DispatcherError(message=message, **self._get_log_context(worker, job_id))
        )
