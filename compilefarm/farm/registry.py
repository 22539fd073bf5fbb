"""
Worker Registry - Declared compile slaves and their connection lifecycle.

The registry is the single owner of every Worker in a build session.
It parses slave declarations, connects and registers slaves, and is the
only place worker connection state changes.

Key responsibilities:
- Declaration of slaves from option strings and project attributes
- Concurrent registration (connect, handshake, source sync)
- Channel lookup for Active workers
- Dropping workers whose channel fails mid-session

All state that must stay consistent with dispatch decisions is guarded
by a single lock, shared with the Dispatcher.
"""

import asyncio
import itertools
from typing import Awaitable, Callable

from compilefarm.channels import Channel, TCPChannel
from compilefarm.env import Env
from compilefarm.errors import (
    ChannelError,
    DeclarationError,
    NoCapacityError,
    RegistrationError,
)
from compilefarm.logging import Logger
from compilefarm.models import (
    PROTOCOL_VERSION,
    HandshakeRequest,
    HandshakeResponse,
    SessionContext,
    SyncAck,
    SyncRequest,
    Worker,
    WorkerState,
)
from compilefarm.paths import Project

from .declaration import parse_slaves
from .logging_models import (
    RegistryDebug,
    RegistryError,
    RegistryInfo,
    RegistryWarning,
)
from .state_machine import WorkerStateMachine

ChannelFactory = Callable[[str, int, Env], Awaitable[Channel]]


class WorkerRegistry:
    """
    Session-scoped map of host identifier to Worker.

    Usage:
        registry = WorkerRegistry(env)
        registry.declare("build1:4,build2:2")

        await registry.register_all(context)
        channel = registry.lookup_channel("build1")
    """

    def __init__(
        self,
        env: Env,
        channel_factory: ChannelFactory | None = None,
        local_parallelism: int | None = None,
        session_id: str = "",
        logger: Logger | None = None,
    ) -> None:
        if channel_factory is None:
            channel_factory = TCPChannel.connect

        if local_parallelism is None:
            local_parallelism = env.COMPILEFARM_LOCAL_PARALLELISM

        if local_parallelism < 0:
            raise ValueError("local parallelism cannot be negative")

        self._env = env
        self._channel_factory = channel_factory
        self._local_parallelism = local_parallelism
        self._session_id = session_id
        self._logger = logger or Logger()

        # Worker storage - lowercased host -> Worker, in declaration order
        self._workers: dict[str, Worker] = {}
        self._order = itertools.count()

        # Single lock for every mutation that must be atomic with dispatch
        self._lock = asyncio.Lock()

        self._closing = False
        self._registered = False

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def local_parallelism(self) -> int:
        return self._local_parallelism

    @property
    def closing(self) -> bool:
        return self._closing

    @property
    def registered(self) -> bool:
        return self._registered

    def begin_closing(self) -> None:
        """Stop honoring dispatches. Never undone within a session."""
        self._closing = True

    # =========================================================================
    # Declaration
    # =========================================================================

    def declare(self, declaration: str) -> list[Worker]:
        """
        Parse a slave declaration and add its entries as Unregistered
        workers. Raises DeclarationError before adding anything if any
        entry is malformed or already declared.
        """
        if self._closing:
            raise DeclarationError(declaration, "session is closing")

        slaves = parse_slaves(
            declaration,
            default_slots=self._env.COMPILEFARM_DEFAULT_SLOTS,
            default_port=self._env.COMPILEFARM_DEFAULT_PORT,
        )

        known = set(self._workers)
        for slave in slaves:
            if slave.host.lower() in known:
                raise DeclarationError(
                    declaration, f"slave {slave.host} is already declared"
                )

        declared: list[Worker] = []
        for slave in slaves:
            worker = Worker(
                slave.host,
                slave.port,
                slave.slots,
                next(self._order),
            )

            self._workers[worker.host.lower()] = worker
            declared.append(worker)

        return declared

    def declare_project(self, project: Project) -> list[Worker]:
        if len(project.remote_build_slaves) == 0:
            return []

        return self.declare(",".join(project.remote_build_slaves))

    # =========================================================================
    # Lookup
    # =========================================================================

    def get(self, host: str) -> Worker | None:
        return self._workers.get(host.lower())

    def workers(self) -> list[Worker]:
        """Snapshot of all workers in registration order."""
        return list(self._workers.values())

    def active_workers(self) -> list[Worker]:
        return [worker for worker in self._workers.values() if worker.is_active]

    def lookup_channel(self, host: str) -> Channel | None:
        """
        Channel of an Active worker, or None for unknown hosts and
        workers in any other state.
        """
        worker = self._workers.get(host.lower())
        if worker is None or not worker.is_active:
            return None

        return worker.channel

    def __len__(self) -> int:
        return len(self._workers)

    def __contains__(self, host: object) -> bool:
        return isinstance(host, str) and host.lower() in self._workers

    # =========================================================================
    # State Transitions
    # =========================================================================

    def transition(self, worker: Worker, to_state: WorkerState) -> None:
        WorkerStateMachine.transition(worker, to_state)

    async def drop(self, worker: Worker, reason: str) -> bool:
        """
        Force an Active worker back to Unregistered after a channel
        failure. Returns False if the worker was no longer Active.
        """
        async with self._lock:
            dropped = self._drop(worker, reason)

        if dropped:
            await self._log_warning(f"Dropped slave {worker.host}: {reason}")

        return dropped

    def _drop(self, worker: Worker, reason: str) -> bool:
        if not worker.is_active:
            return False

        channel = worker.channel
        worker.channel = None
        worker.last_error = reason
        self.transition(worker, WorkerState.UNREGISTERED)

        if channel is not None:
            channel.abort()

        return True

    # =========================================================================
    # Registration
    # =========================================================================

    async def register_all(self, context: SessionContext) -> list[Worker]:
        """
        Connect, handshake and sync every Unregistered worker.

        Workers register concurrently and independently. A failed worker
        stays Unregistered and is excluded from capacity. Raises
        NoCapacityError when no local or remote slot remains.
        """
        self._registered = True

        pending = [
            worker
            for worker in self._workers.values()
            if worker.state == WorkerState.UNREGISTERED
        ]

        await self._log_debug(f"Registering {len(pending)} slaves")

        results = await asyncio.gather(
            *[self._register(worker, context) for worker in pending]
        )

        activated = [worker for worker, ok in zip(pending, results) if ok]

        remote_slots = self.remote_slots()
        if self._local_parallelism + remote_slots == 0:
            await self._log_error("No local or remote execution slots available")
            raise NoCapacityError(
                f"All {len(pending)} slaves failed to register and local parallelism is 0"
            )

        await self._log_info(
            f"Registered {len(activated)} of {len(pending)} slaves ({remote_slots} remote slots)"
        )

        return activated

    async def _register(self, worker: Worker, context: SessionContext) -> bool:
        async with self._lock:
            if self._closing or worker.state != WorkerState.UNREGISTERED:
                return False

            self.transition(worker, WorkerState.REGISTERING)

        channel: Channel | None = None

        try:
            channel = await asyncio.wait_for(
                self._channel_factory(worker.host, worker.port, self._env),
                timeout=self._env.connect_timeout,
            )

            await self._handshake(worker, channel, context)
            await self._synchronize(worker, channel, context)

        except asyncio.CancelledError:
            if channel is not None:
                channel.abort()

            if worker.state == WorkerState.REGISTERING:
                self.transition(worker, WorkerState.UNREGISTERED)

            raise

        except (
            ChannelError,
            RegistrationError,
            asyncio.TimeoutError,
            OSError,
        ) as err:
            if channel is not None:
                channel.abort()

            reason = self._describe_failure(err)

            async with self._lock:
                if worker.state == WorkerState.REGISTERING:
                    worker.last_error = reason
                    self.transition(worker, WorkerState.UNREGISTERED)

            await self._log_warning(f"Slave {worker.host} not registered: {reason}")
            return False

        async with self._lock:
            if worker.state != WorkerState.REGISTERING:
                # Torn down while the handshake was in flight
                channel.abort()
                return False

            worker.channel = channel
            worker.last_error = None
            self.transition(worker, WorkerState.ACTIVE)

        await self._log_info(
            f"Slave {worker.host}:{worker.port} active with {worker.slots} slots"
        )

        return True

    async def _handshake(
        self,
        worker: Worker,
        channel: Channel,
        context: SessionContext,
    ) -> None:
        await channel.send(
            HandshakeRequest(
                protocol_version=PROTOCOL_VERSION,
                project=context.project.name,
                build_env=context.build_env,
                root_directory=context.paths.root.as_posix(),
            )
        )

        response = await asyncio.wait_for(
            channel.receive(),
            timeout=self._env.request_timeout,
        )

        if not isinstance(response, HandshakeResponse):
            raise RegistrationError(
                worker.host, f"expected handshake response, got {type(response).__name__}"
            )

        if not response.accepted:
            raise RegistrationError(
                worker.host, response.reason or "slave refused the handshake"
            )

        if response.protocol_version != PROTOCOL_VERSION:
            raise RegistrationError(
                worker.host,
                f"protocol version {response.protocol_version} does not match {PROTOCOL_VERSION}",
            )

        worker.slave_host = response.slave_host or worker.host

        if 0 < response.max_processes < worker.slots:
            await self._log_warning(
                f"Slave {worker.host} declared with {worker.slots} slots but runs at most {response.max_processes} processes"
            )

    async def _synchronize(
        self,
        worker: Worker,
        channel: Channel,
        context: SessionContext,
    ) -> None:
        directories = [
            context.paths.relative(directory.path)
            for directory in context.paths.directories()
        ]

        await channel.send(
            SyncRequest(
                project=context.project.name,
                build_env=context.build_env,
                directories=directories,
            )
        )

        ack = await asyncio.wait_for(
            channel.receive(),
            timeout=self._env.request_timeout,
        )

        if not isinstance(ack, SyncAck):
            raise RegistrationError(
                worker.host, f"expected sync acknowledgement, got {type(ack).__name__}"
            )

        if not ack.ok:
            raise RegistrationError(
                worker.host, ack.reason or "source synchronization failed"
            )

    def _describe_failure(self, err: Exception) -> str:
        if isinstance(err, RegistrationError):
            return err.reason

        if isinstance(err, asyncio.TimeoutError):
            return "timed out"

        return str(err) or type(err).__name__

    # =========================================================================
    # Capacity
    # =========================================================================

    def remote_slots(self) -> int:
        return sum(worker.slots for worker in self._workers.values() if worker.is_active)

    # =========================================================================
    # Logging Helpers
    # =========================================================================

    def _get_log_context(self) -> dict:
        active = self.active_workers()
        return {
            "session_id": self._session_id,
            "worker_count": len(self._workers),
            "active_worker_count": len(active),
            "remote_slots": sum(worker.slots for worker in active),
        }

    async def _log_debug(self, message: str) -> None:
        await self._logger.log(RegistryDebug(message=message, **self._get_log_context()))

    async def _log_info(self, message: str) -> None:
        await self._logger.log(RegistryInfo(message=message, **self._get_log_context()))

    async def _log_warning(self, message: str) -> None:
        await self._logger.log(RegistryWarning(message=message, **self._get_log_context()))

    async def _log_error(self, message: str) -> None:
        await self._logger.log(RegistryError(message=message, **self._get_log_context()))
