"""Sequential specification of a key/value store for linearizability checks."""

from collections import defaultdict
from dataclasses import dataclass
from enum import IntEnum

__all__ = [
    "KvInput",
    "KvOp",
    "KvOutput",
    "Operation",
    "describe_operation",
    "initial_state",
    "partition",
    "step",
]


class KvOp(IntEnum):
    """Kinds of key/value operation."""

    GET = 0
    PUT = 1
    APPEND = 2
    APPEND_RETURN = 3  # append that returns the previous value


@dataclass(frozen=True)
class KvInput:
    op: KvOp
    key: str
    value: str = ""

    def __post_init__(self):
        object.__setattr__(self, "op", KvOp(self.op))


@dataclass(frozen=True)
class KvOutput:
    value: str = ""


@dataclass(frozen=True)
class Operation:
    """One client operation with its call and return timestamps."""

    input: KvInput
    output: KvOutput
    call: int
    return_: int
    client_id: int = 0


def partition(history):
    """Split a history into per-key histories, ordered by key."""
    groups = defaultdict(list)
    for operation in history:
        groups[operation.input.key].append(operation)
    return [groups[key] for key in sorted(groups)]


def initial_state():
    """State of a single key before any operation."""
    return ""


def step(state, inp, out):
    """Apply one operation; returns (legal, new_state)."""
    if inp.op is KvOp.GET:
        return out.value == state, state
    if inp.op is KvOp.PUT:
        return True, inp.value
    if inp.op is KvOp.APPEND:
        return True, state + inp.value
    return out.value == state, state + inp.value


def describe_operation(inp, out):
    """Human-readable form of an operation."""
    if inp.op is KvOp.GET:
        return f"get('{inp.key}') -> '{out.value}'"
    if inp.op is KvOp.PUT:
        return f"put('{inp.key}', '{inp.value}')"
    if inp.op is KvOp.APPEND:
        return f"append('{inp.key}', '{inp.value}')"
    return "<invalid>"