from abc import ABC, abstractmethod

from compilefarm.models import SlaveMessage


class Channel(ABC):
    """
    Bidirectional, typed message transport to one compile slave.

    Implementations raise ``ChannelError`` (or a subclass) on transport
    failure or protocol violation. ``close`` is graceful and may wait on
    the peer, ``abort`` drops the connection immediately.
    """

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = port

    @property
    @abstractmethod
    def closed(self) -> bool: ...

    @abstractmethod
    async def send(self, message: SlaveMessage) -> None: ...

    @abstractmethod
    async def receive(self) -> SlaveMessage: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    def abort(self) -> None: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(host={self.host!r}, port={self.port})"
