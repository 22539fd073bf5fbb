"""
Fake channels and channel factories for farm tests.

FakeChannel records every message sent to it and hands out scripted
replies. Replies pushed with ``feed`` are returned by ``receive`` in
order; ``fail`` makes the next receive raise as if the connection
dropped.
"""

import asyncio

from compilefarm.channels import Channel
from compilefarm.env import Env
from compilefarm.errors import ChannelClosedError, ChannelError
from compilefarm.models import (
    PROTOCOL_VERSION,
    CompileResult,
    HandshakeResponse,
    SlaveMessage,
    SyncAck,
)


class FakeChannel(Channel):
    """In-memory channel with scripted replies."""

    def __init__(
        self,
        host: str,
        port: int = 8484,
        hang_on_send: bool = False,
        hang_on_close: bool = False,
        fail_on_send: bool = False,
    ) -> None:
        super().__init__(host, port)
        self.sent: list[SlaveMessage] = []
        self.hang_on_send = hang_on_send
        self.hang_on_close = hang_on_close
        self.fail_on_send = fail_on_send
        self.close_called = False
        self.aborted = False

        self._replies: asyncio.Queue[SlaveMessage | Exception] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, message: SlaveMessage) -> None:
        self._replies.put_nowait(message)

    def fail(self, reason: str = "connection reset") -> None:
        self._replies.put_nowait(ChannelError(reason))

    def sent_of(self, message_type: type) -> list[SlaveMessage]:
        return [message for message in self.sent if isinstance(message, message_type)]

    async def send(self, message: SlaveMessage) -> None:
        if self._closed:
            raise ChannelClosedError(f"Channel to {self.host} is closed")

        if self.fail_on_send:
            raise ChannelError(f"Send to {self.host} failed")

        if self.hang_on_send:
            await asyncio.Event().wait()

        self.sent.append(message)

    async def receive(self) -> SlaveMessage:
        if self._closed:
            raise ChannelClosedError(f"Channel to {self.host} is closed")

        reply = await self._replies.get()
        if isinstance(reply, Exception):
            raise reply

        return reply

    async def close(self) -> None:
        self.close_called = True

        if self.hang_on_close:
            await asyncio.Event().wait()

        self._closed = True
        self._replies.put_nowait(ChannelClosedError(f"Channel to {self.host} is closed"))

    def abort(self) -> None:
        self.aborted = True
        self._closed = True
        self._replies.put_nowait(ChannelClosedError(f"Channel to {self.host} is closed"))


class FakeSlaveFarm:
    """
    Channel factory standing in for a set of slaves.

    Every host accepts the handshake and the sync unless listed in
    ``unreachable`` (connect fails), ``refusing`` (handshake rejected)
    or ``silent`` (never answers the handshake).
    """

    def __init__(
        self,
        unreachable: set[str] | None = None,
        refusing: set[str] | None = None,
        silent: set[str] | None = None,
        max_processes: int = 0,
    ) -> None:
        self.unreachable = unreachable or set()
        self.refusing = refusing or set()
        self.silent = silent or set()
        self.max_processes = max_processes
        self.channels: dict[str, FakeChannel] = {}
        self.connect_attempts: list[str] = []
        self.channel_options: dict[str, dict] = {}

    async def __call__(self, host: str, port: int, env: Env) -> FakeChannel:
        self.connect_attempts.append(host)

        if host in self.unreachable:
            raise ChannelError(f"Could not connect to {host}:{port}: connection refused")

        channel = FakeChannel(host, port, **self.channel_options.get(host, {}))
        self.channels[host] = channel

        if host in self.silent:
            return channel

        if host in self.refusing:
            channel.feed(
                HandshakeResponse(
                    accepted=False,
                    protocol_version=PROTOCOL_VERSION,
                    reason="build environment locked",
                )
            )

            return channel

        channel.feed(
            HandshakeResponse(
                accepted=True,
                protocol_version=PROTOCOL_VERSION,
                slave_host=f"{host}.farm",
                max_processes=self.max_processes,
            )
        )
        channel.feed(SyncAck(ok=True))

        return channel


def compile_result(job_id: int, success: bool = True, exit_status: int = 0) -> CompileResult:
    return CompileResult(
        job_id=job_id,
        success=success,
        exit_status=exit_status,
        output="" if success else "error: missing semicolon",
        artifacts=[f"obj/job{job_id}.o"] if success else [],
    )
