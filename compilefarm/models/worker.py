from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from compilefarm.channels import Channel


class WorkerState(str, Enum):
    """Connection state of a compile slave."""

    UNREGISTERED = "unregistered"  # Declared, not connected
    REGISTERING = "registering"  # Connect/handshake/sync in progress
    ACTIVE = "active"  # Accepting compile requests
    DRAINING = "draining"  # Told to disconnect
    CLOSED = "closed"  # Channel released, terminal


class SlaveDeclaration:
    __slots__ = ("host", "slots", "port", "source")

    def __init__(
        self,
        host: str,
        slots: int,
        port: int,
        source: str = "",
    ) -> None:
        self.host = host
        self.slots = slots
        self.port = port
        self.source = source

    def __repr__(self) -> str:
        return f"SlaveDeclaration(host={self.host!r}, slots={self.slots}, port={self.port})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SlaveDeclaration):
            return NotImplemented

        return (self.host, self.slots, self.port) == (
            other.host,
            other.slots,
            other.port,
        )


class Worker:
    __slots__ = (
        "host",
        "port",
        "slots",
        "order",
        "outstanding",
        "state",
        "channel",
        "jobs_run",
        "last_error",
        "slave_host",
    )

    def __init__(
        self,
        host: str,
        port: int,
        slots: int,
        order: int,
    ) -> None:
        self.host = host
        self.port = port
        self.slots = slots
        self.order = order
        self.outstanding = 0
        self.state = WorkerState.UNREGISTERED
        self.channel: Channel | None = None
        self.jobs_run = 0
        self.last_error: str | None = None
        self.slave_host: str | None = None

    @property
    def is_active(self) -> bool:
        return self.state == WorkerState.ACTIVE

    @property
    def free_slots(self) -> int:
        return self.slots - self.outstanding if self.is_active else 0

    @property
    def has_free_slot(self) -> bool:
        return self.free_slots > 0

    def __repr__(self) -> str:
        return (
            f"Worker(host={self.host!r}, state={self.state.value}, "
            f"outstanding={self.outstanding}/{self.slots})"
        )
