"""
State machines for workers and jobs.

Workers: UNREGISTERED -> REGISTERING -> ACTIVE -> DRAINING -> CLOSED, with
REGISTERING -> UNREGISTERED on registration failure, ACTIVE -> UNREGISTERED
on connection loss, and any non-closed state -> DRAINING at teardown.

Jobs: QUEUED -> RUNNING -> COMPLETED/FAILED, QUEUED -> FAILED.
"""

from compilefarm.errors import InvalidTransitionError
from compilefarm.models import Job, JobState, Worker, WorkerState


class WorkerStateMachine:
    VALID_TRANSITIONS: dict[WorkerState, set[WorkerState]] = {
        WorkerState.UNREGISTERED: {WorkerState.REGISTERING, WorkerState.DRAINING},
        WorkerState.REGISTERING: {
            WorkerState.ACTIVE,
            WorkerState.UNREGISTERED,
            WorkerState.DRAINING,
        },
        WorkerState.ACTIVE: {WorkerState.DRAINING, WorkerState.UNREGISTERED},
        WorkerState.DRAINING: {WorkerState.CLOSED},
        WorkerState.CLOSED: set(),  # Terminal
    }

    @classmethod
    def can_transition(cls, from_state: WorkerState, to_state: WorkerState) -> bool:
        return to_state in cls.VALID_TRANSITIONS.get(from_state, set())

    @classmethod
    def transition(cls, worker: Worker, to_state: WorkerState) -> None:
        if not cls.can_transition(worker.state, to_state):
            raise InvalidTransitionError(
                f"worker {worker.host}",
                worker.state.value,
                to_state.value,
            )

        worker.state = to_state


class JobStateMachine:
    VALID_TRANSITIONS: dict[JobState, set[JobState]] = {
        JobState.QUEUED: {JobState.RUNNING, JobState.FAILED},
        JobState.RUNNING: {JobState.COMPLETED, JobState.FAILED},
        JobState.COMPLETED: set(),  # Terminal
        JobState.FAILED: set(),  # Terminal
    }

    @classmethod
    def can_transition(cls, from_state: JobState, to_state: JobState) -> bool:
        return to_state in cls.VALID_TRANSITIONS.get(from_state, set())

    @classmethod
    def transition(cls, job: Job, to_state: JobState) -> None:
        if not cls.can_transition(job.state, to_state):
            raise InvalidTransitionError(
                f"job {job.job_id}",
                job.state.value,
                to_state.value,
            )

        job.state = to_state
