"""
Tests for TCPChannel framing over a loopback connection.

Covers:
- Happy path: typed messages survive the wire
- Compression above the configured threshold
- Failure mode: oversized frames, undecodable payloads, peer closing
- Negative path: connection refused, use after close
"""

import asyncio
import socket
import struct

import pytest

from compilefarm.channels import TCPChannel
from compilefarm.channels.message_limits import FLAG_COMPRESSED, MAX_FRAME_SIZE
from compilefarm.env import Env
from compilefarm.errors import ChannelClosedError, ChannelError, MessageSizeError
from compilefarm.models import CompileRequest, CompileResult, Disconnect

HEADER = struct.Struct(">IB")


class LoopbackSlave:
    """
    Minimal TCP peer. Records the flags of every frame it receives,
    echoes frames back, or answers with scripted raw bytes.
    """

    def __init__(self, reply: bytes | None = None, close_immediately: bool = False) -> None:
        self.reply = reply
        self.close_immediately = close_immediately
        self.flags: list[int] = []
        self.server: asyncio.Server | None = None

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)

    async def stop(self) -> None:
        self.server.close()
        await self.server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            if self.close_immediately:
                return

            if self.reply is not None:
                writer.write(self.reply)
                await writer.drain()

            while True:
                header = await reader.readexactly(HEADER.size)
                length, flags = HEADER.unpack(header)
                payload = await reader.readexactly(length)

                self.flags.append(flags)
                writer.write(header + payload)
                await writer.drain()

        except (asyncio.IncompleteReadError, ConnectionError):
            pass

        finally:
            writer.close()


@pytest.fixture
def channel_env() -> Env:
    return Env(
        COMPILEFARM_CONNECT_TIMEOUT="1s",
        COMPILEFARM_COMPRESSION_THRESHOLD=256,
    )


class TestTCPChannelMessages:
    """Test sending and receiving typed messages."""

    @pytest.mark.asyncio
    async def test_message_round_trip(self, channel_env: Env):
        slave = LoopbackSlave()
        await slave.start()

        channel = await TCPChannel.connect("127.0.0.1", slave.port, channel_env)

        request = CompileRequest(
            job_id=7,
            project="app",
            language="ada",
            options=["-O2"],
            obj_name="main.o",
            dep_name="main.ali",
        )

        await channel.send(request)
        received = await asyncio.wait_for(channel.receive(), timeout=1)

        assert received == request
        assert slave.flags == [0]

        await channel.close()
        assert channel.closed

        await slave.stop()

    @pytest.mark.asyncio
    async def test_large_messages_compressed(self, channel_env: Env):
        slave = LoopbackSlave()
        await slave.start()

        channel = await TCPChannel.connect("127.0.0.1", slave.port, channel_env)

        result = CompileResult(
            job_id=1,
            success=False,
            exit_status=1,
            output="main.adb:1:1: error: missing semicolon\n" * 200,
        )

        await channel.send(result)
        received = await asyncio.wait_for(channel.receive(), timeout=1)

        assert received == result
        assert slave.flags == [FLAG_COMPRESSED]

        await channel.close()
        await slave.stop()


class TestTCPChannelFailures:
    """Test transport failures and protocol violations."""

    @pytest.mark.asyncio
    async def test_oversized_frame_rejected(self, channel_env: Env):
        slave = LoopbackSlave(reply=HEADER.pack(MAX_FRAME_SIZE + 1, 0))
        await slave.start()

        channel = await TCPChannel.connect("127.0.0.1", slave.port, channel_env)

        with pytest.raises(MessageSizeError):
            await asyncio.wait_for(channel.receive(), timeout=1)

        channel.abort()
        await slave.stop()

    @pytest.mark.asyncio
    async def test_undecodable_payload(self, channel_env: Env):
        garbage = b"\xc1\xc1\xc1"
        slave = LoopbackSlave(reply=HEADER.pack(len(garbage), 0) + garbage)
        await slave.start()

        channel = await TCPChannel.connect("127.0.0.1", slave.port, channel_env)

        with pytest.raises(ChannelError):
            await asyncio.wait_for(channel.receive(), timeout=1)

        channel.abort()
        await slave.stop()

    @pytest.mark.asyncio
    async def test_peer_closing(self, channel_env: Env):
        slave = LoopbackSlave(close_immediately=True)
        await slave.start()

        channel = await TCPChannel.connect("127.0.0.1", slave.port, channel_env)

        with pytest.raises(ChannelClosedError):
            await asyncio.wait_for(channel.receive(), timeout=1)

        channel.abort()
        await slave.stop()

    @pytest.mark.asyncio
    async def test_connection_refused(self, channel_env: Env):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            probe.bind(("127.0.0.1", 0))
            port = probe.getsockname()[1]

        with pytest.raises(ChannelError):
            await TCPChannel.connect("127.0.0.1", port, channel_env)

    @pytest.mark.asyncio
    async def test_send_after_abort(self, channel_env: Env):
        slave = LoopbackSlave()
        await slave.start()

        channel = await TCPChannel.connect("127.0.0.1", slave.port, channel_env)
        channel.abort()

        with pytest.raises(ChannelClosedError):
            await channel.send(Disconnect())

        with pytest.raises(ChannelClosedError):
            await channel.receive()

        await slave.stop()
