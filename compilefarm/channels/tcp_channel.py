from __future__ import annotations

import asyncio
import socket
import struct

import msgspec
import zstandard

from compilefarm.env import Env
from compilefarm.errors import ChannelClosedError, ChannelError
from compilefarm.models import SlaveMessage

from .channel import Channel
from .message_limits import (
    FLAG_COMPRESSED,
    FRAME_HEADER_SIZE,
    MAX_DECOMPRESSED_SIZE,
    validate_frame_size,
)

_HEADER = struct.Struct(">IB")


class TCPChannel(Channel):
    def __init__(
        self,
        host: str,
        port: int,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        compression_threshold: int = 4096,
    ) -> None:
        super().__init__(host, port)
        self._reader = reader
        self._writer = writer
        self._compression_threshold = compression_threshold
        self._encoder = msgspec.msgpack.Encoder()
        self._decoder = msgspec.msgpack.Decoder(SlaveMessage)
        self._compressor = zstandard.ZstdCompressor()
        self._decompressor = zstandard.ZstdDecompressor()
        self._send_lock = asyncio.Lock()
        self._closed = False

    @classmethod
    async def connect(
        cls,
        host: str,
        port: int,
        env: Env,
    ) -> TCPChannel:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=env.connect_timeout,
            )

        except asyncio.TimeoutError as err:
            raise ChannelError(
                f"Timed out connecting to {host}:{port} after {env.connect_timeout}s"
            ) from err

        except OSError as err:
            raise ChannelError(f"Could not connect to {host}:{port}: {err}") from err

        tcp_socket: socket.socket | None = writer.get_extra_info("socket")
        if tcp_socket is not None:
            tcp_socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        return cls(
            host,
            port,
            reader,
            writer,
            compression_threshold=env.COMPILEFARM_COMPRESSION_THRESHOLD,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: SlaveMessage) -> None:
        if self._closed:
            raise ChannelClosedError(f"Channel to {self.host} is closed")

        payload = self._encoder.encode(message)
        flags = 0

        if len(payload) > self._compression_threshold:
            payload = self._compressor.compress(payload)
            flags |= FLAG_COMPRESSED

        validate_frame_size(len(payload))

        async with self._send_lock:
            try:
                self._writer.write(_HEADER.pack(len(payload), flags) + payload)
                await self._writer.drain()

            except (ConnectionError, OSError) as err:
                raise ChannelError(f"Send to {self.host} failed: {err}") from err

    async def receive(self) -> SlaveMessage:
        if self._closed:
            raise ChannelClosedError(f"Channel to {self.host} is closed")

        try:
            header = await self._reader.readexactly(FRAME_HEADER_SIZE)
            length, flags = _HEADER.unpack(header)

            validate_frame_size(length)

            payload = await self._reader.readexactly(length)

        except asyncio.IncompleteReadError as err:
            raise ChannelClosedError(f"{self.host} closed the connection") from err

        except (ConnectionError, OSError) as err:
            raise ChannelError(f"Receive from {self.host} failed: {err}") from err

        try:
            if flags & FLAG_COMPRESSED:
                payload = self._decompressor.decompress(
                    payload,
                    max_output_size=MAX_DECOMPRESSED_SIZE,
                )

            return self._decoder.decode(payload)

        except (zstandard.ZstdError, msgspec.DecodeError) as err:
            raise ChannelError(f"Protocol violation from {self.host}: {err}") from err

    async def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        self._writer.close()

        try:
            await self._writer.wait_closed()

        except (ConnectionError, OSError):
            pass

    def abort(self) -> None:
        self._closed = True
        transport = self._writer.transport
        if transport is not None and not transport.is_closing():
            transport.abort()
