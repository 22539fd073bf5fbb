"""
Exceptions raised by the compile farm.

Only declaration errors and loss of all capacity are fatal to a build
session. Registration and channel errors are contained per worker and
surface as reduced capacity or failed jobs.
"""


class CompileFarmError(Exception):
    """Base class for all compile farm errors."""

    pass


class DeclarationError(CompileFarmError):
    """
    Raised when a slave declaration cannot be parsed.

    Always raised before any worker state is created or any
    connection is attempted.
    """

    def __init__(self, declaration: str, reason: str) -> None:
        super().__init__(f"Invalid slave declaration {declaration!r}: {reason}")
        self.declaration = declaration
        self.reason = reason


class RegistrationError(CompileFarmError):
    """Raised when connecting, handshaking or syncing with a slave fails."""

    def __init__(self, host: str, reason: str) -> None:
        super().__init__(f"Registration of {host} failed: {reason}")
        self.host = host
        self.reason = reason


class NoCapacityError(CompileFarmError):
    """Raised when neither local nor remote execution slots remain."""

    pass


class ChannelError(CompileFarmError):
    """Raised by a channel on transport failure or protocol violation."""

    pass


class ChannelClosedError(ChannelError):
    """Raised when reading from or writing to a closed channel."""

    pass


class MessageSizeError(ChannelError):
    """Raised when a frame exceeds the allowed message size."""

    pass


class CapacityInvariantError(CompileFarmError):
    """
    Raised when a remote dispatch is requested but no worker has a
    free slot. This means the caller's admission control is broken.
    """

    pass


class DispatchRejectedError(CompileFarmError):
    """Raised when a dispatch is attempted after teardown has begun."""

    pass


class InvalidTransitionError(CompileFarmError):
    """Raised on an illegal worker or job state transition."""

    def __init__(self, subject: str, from_state: str, to_state: str) -> None:
        super().__init__(
            f"Invalid transition for {subject}: {from_state} -> {to_state}"
        )
        self.subject = subject
        self.from_state = from_state
        self.to_state = to_state
