"""
Message types exchanged with a compile slave.

These structs define the typed messages a channel carries. Channels
encode them with msgspec, using the ``kind`` field as the union tag.
"""

import msgspec

PROTOCOL_VERSION = 1


class Message(msgspec.Struct, kw_only=True, tag_field="kind"):
    pass


class HandshakeRequest(Message, tag="handshake"):
    protocol_version: int
    project: str
    build_env: str
    root_directory: str


class HandshakeResponse(Message, tag="handshake_response"):
    accepted: bool
    protocol_version: int
    slave_host: str = ""
    max_processes: int = 0
    reason: str | None = None


class SyncRequest(Message, tag="sync"):
    project: str
    build_env: str
    directories: list[str]


class SyncAck(Message, tag="sync_ack"):
    ok: bool
    reason: str | None = None


class CompileRequest(Message, tag="compile"):
    job_id: int
    project: str
    language: str
    options: list[str]
    obj_name: str
    dep_name: str
    env: dict[str, str] = msgspec.field(default_factory=dict)


class CompileResult(Message, tag="compile_result"):
    job_id: int
    success: bool
    exit_status: int = 0
    output: str = ""
    artifacts: list[str] = msgspec.field(default_factory=list)


class CleanupRequest(Message, tag="cleanup"):
    project: str
    build_env: str


class Disconnect(Message, tag="disconnect"):
    reason: str = "end of session"


SlaveMessage = (
    HandshakeRequest
    | HandshakeResponse
    | SyncRequest
    | SyncAck
    | CompileRequest
    | CompileResult
    | CleanupRequest
    | Disconnect
)
