"""
Logging models for the farm module.

These models are used by WorkerRegistry, Dispatcher and SessionTeardown
to log structured information about slave orchestration.

Each model carries the session it belongs to plus the counters that
matter for the component emitting it.
"""

from compilefarm.logging.models import Entry, LogLevel


# =============================================================================
# WorkerRegistry Logging Models
# =============================================================================


class RegistryDebug(Entry, kw_only=True):
    """Debug-level logging for WorkerRegistry operations."""

    session_id: str
    worker_count: int
    active_worker_count: int
    remote_slots: int
    level: LogLevel = LogLevel.DEBUG


class RegistryInfo(Entry, kw_only=True):
    """Info-level logging for WorkerRegistry operations."""

    session_id: str
    worker_count: int
    active_worker_count: int
    remote_slots: int
    level: LogLevel = LogLevel.INFO


class RegistryWarning(Entry, kw_only=True):
    """Warning-level logging for WorkerRegistry operations."""

    session_id: str
    worker_count: int
    active_worker_count: int
    remote_slots: int
    level: LogLevel = LogLevel.WARN


class RegistryError(Entry, kw_only=True):
    """Error-level logging for WorkerRegistry operations."""

    session_id: str
    worker_count: int
    active_worker_count: int
    remote_slots: int
    level: LogLevel = LogLevel.ERROR


# =============================================================================
# Dispatcher Logging Models
# =============================================================================


class DispatcherDebug(Entry, kw_only=True):
    """Debug-level logging for Dispatcher operations."""

    session_id: str
    host: str
    job_id: int
    outstanding: int
    slots: int
    level: LogLevel = LogLevel.DEBUG


class DispatcherWarning(Entry, kw_only=True):
    """Warning-level logging for Dispatcher operations."""

    session_id: str
    host: str
    job_id: int
    outstanding: int
    slots: int
    level: LogLevel = LogLevel.WARN


class DispatcherError(Entry, kw_only=True):
    """Error-level logging for Dispatcher operations."""

    session_id: str
    host: str
    job_id: int
    outstanding: int
    slots: int
    level: LogLevel = LogLevel.ERROR


# =============================================================================
# SessionTeardown Logging Models
# =============================================================================


class TeardownDebug(Entry, kw_only=True):
    """Debug-level logging for SessionTeardown operations."""

    session_id: str
    host: str
    from_signal: bool
    level: LogLevel = LogLevel.DEBUG


class TeardownInfo(Entry, kw_only=True):
    """Info-level logging for SessionTeardown operations."""

    session_id: str
    host: str
    from_signal: bool
    level: LogLevel = LogLevel.INFO


class TeardownWarning(Entry, kw_only=True):
    """Warning-level logging for SessionTeardown operations."""

    session_id: str
    host: str
    from_signal: bool
    level: LogLevel = LogLevel.WARN


# =============================================================================
# BuildSession Logging Models
# =============================================================================


class SessionInfo(Entry, kw_only=True):
    """Info-level logging for BuildSession lifecycle events."""

    session_id: str
    project: str
    build_env: str
    level: LogLevel = LogLevel.INFO


class SessionWarning(Entry, kw_only=True):
    """Warning-level logging for BuildSession lifecycle events."""

    session_id: str
    project: str
    build_env: str
    level: LogLevel = LogLevel.WARN
