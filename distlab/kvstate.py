"""Key/value state machine and the messages of the replicated key/value service."""

from dataclasses import dataclass, field
from enum import Enum

from distlab import labgob

__all__ = [
    "OP_APPEND",
    "OP_GET",
    "OP_PUT",
    "Command",
    "CommandReply",
    "CommandRequest",
    "Err",
    "MemoryKVStateMachine",
    "Op",
    "OperationContext",
    "Snapshot",
]

OP_GET = "Get"
OP_PUT = "Put"
OP_APPEND = "Append"


class Err(str, Enum):
    OK = "OK"
    ERR_NO_KEY = "ErrNoKey"
    ERR_WRONG_LEADER = "ErrWrongLeader"
    ERR_TIMEOUT = "ErrTimeout"


@dataclass
class Command:
    key: str = ""
    value: str = ""
    op: str = ""


@dataclass
class CommandRequest:
    command: Command = field(default_factory=Command)
    client_id: int = 0
    request_id: int = 0


@dataclass
class CommandReply:
    error: Err = Err.OK
    value: str = ""


@dataclass
class OperationContext:
    last_response: CommandReply | None = None
    request_id: int = 0


@dataclass
class Op:
    key: str = ""
    value: str = ""
    op: str = ""
    client_id: int = 0
    request_id: int = 0


@dataclass
class MemoryKVStateMachine:
    """In-memory key/value store."""

    data: dict[str, str] = field(default_factory=dict)

    def get(self, key):
        """Return (value, Err.OK), or ("", Err.ERR_NO_KEY) for a missing key."""
        if key in self.data:
            return self.data[key], Err.OK
        return "", Err.ERR_NO_KEY

    def put(self, key, value):
        self.data[key] = value
        return Err.OK

    def append(self, key, value):
        self.data[key] = self.data.get(key, "") + value
        return Err.OK

    def clone(self):
        return MemoryKVStateMachine(dict(self.data))


@dataclass
class Snapshot:
    state_machine: MemoryKVStateMachine = field(default_factory=MemoryKVStateMachine)
    last_operations: dict[int, OperationContext] = field(default_factory=dict)


for _cls in (Err, CommandReply, Snapshot, OperationContext, MemoryKVStateMachine, Op):
    labgob.register(_cls)