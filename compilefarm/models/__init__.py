from .job import LOCAL as LOCAL, Job as Job, JobState as JobState
from .messages import (
    PROTOCOL_VERSION as PROTOCOL_VERSION,
    CleanupRequest as CleanupRequest,
    CompileRequest as CompileRequest,
    CompileResult as CompileResult,
    Disconnect as Disconnect,
    HandshakeRequest as HandshakeRequest,
    HandshakeResponse as HandshakeResponse,
    Message as Message,
    SlaveMessage as SlaveMessage,
    SyncAck as SyncAck,
    SyncRequest as SyncRequest,
)
from .session_context import (
    SessionContext as SessionContext,
    default_build_env as default_build_env,
)
from .worker import (
    SlaveDeclaration as SlaveDeclaration,
    Worker as Worker,
    WorkerState as WorkerState,
)
