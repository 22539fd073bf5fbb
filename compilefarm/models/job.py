from enum import Enum

# Placement reported by CapacityTracker when no remote slot is free
LOCAL = "local"


class JobState(str, Enum):
    """State of a dispatched compilation job."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Job:
    __slots__ = (
        "job_id",
        "worker",
        "project",
        "language",
        "options",
        "obj_name",
        "dep_name",
        "env",
        "state",
        "exit_status",
        "output",
        "artifacts",
        "reason",
    )

    def __init__(
        self,
        job_id: int,
        worker: str,
        project: str,
        language: str,
        options: list[str],
        obj_name: str,
        dep_name: str,
        env: dict[str, str] | None = None,
    ) -> None:
        self.job_id = job_id
        self.worker = worker
        self.project = project
        self.language = language
        self.options = options
        self.obj_name = obj_name
        self.dep_name = dep_name
        self.env = env or {}
        self.state = JobState.QUEUED
        self.exit_status: int | None = None
        self.output = ""
        self.artifacts: list[str] = []
        self.reason: str | None = None

    @property
    def done(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)

    def __repr__(self) -> str:
        return f"Job(job_id={self.job_id}, worker={self.worker!r}, state={self.state.value})"
