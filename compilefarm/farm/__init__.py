"""
Farm module - Remote compile slave orchestration.

Session-side components:
- WorkerRegistry: Slave declaration, registration and lifecycle
- CapacityTracker: Local plus remote slot accounting
- Dispatcher: Job placement and completion delivery
- SessionTeardown: Remote cleanup and idempotent disconnection

Supporting types:
- WorkerStateMachine, JobStateMachine: Valid state transitions
- TeardownReport: Outcome of a teardown
"""

from compilefarm.farm.capacity import CapacityTracker as CapacityTracker
from compilefarm.farm.declaration import (
    parse_slave as parse_slave,
    parse_slaves as parse_slaves,
    read_slaves_file as read_slaves_file,
    resolve_declaration as resolve_declaration,
)
from compilefarm.farm.dispatcher import Dispatcher as Dispatcher
from compilefarm.farm.registry import (
    ChannelFactory as ChannelFactory,
    WorkerRegistry as WorkerRegistry,
)
from compilefarm.farm.state_machine import (
    JobStateMachine as JobStateMachine,
    WorkerStateMachine as WorkerStateMachine,
)
from compilefarm.farm.teardown import (
    SessionTeardown as SessionTeardown,
    TeardownReport as TeardownReport,
)
