"""Messages exchanged between the MapReduce coordinator and its workers."""

import os
from dataclasses import dataclass, field
from enum import IntEnum

from distlab import labgob

__all__ = [
    "ExampleArgs",
    "ExampleReply",
    "Task",
    "TaskState",
    "TaskType",
    "WorkerArgs",
    "WorkerReply",
    "WorkerState",
    "coordinator_sock",
]


class WorkerState(IntEnum):
    INIT = 0
    DONE = 1
    FAIL = 2


class TaskType(IntEnum):
    MAP = 0
    REDUCE = 1


class TaskState(IntEnum):
    INIT = 0
    RUN = 1
    DONE = 2


@dataclass
class Task:
    """A map or reduce task.

    ``input`` holds the input file of a map task, or the intermediate files
    of a reduce task.
    """

    task_id: int = 0
    task_type: TaskType = TaskType.MAP
    task_state: TaskState = TaskState.INIT
    n_reduce: int = 0
    start_time: float = 0.0
    input: list[str] = field(default_factory=list)


@dataclass
class ExampleArgs:
    x: int = 0


@dataclass
class ExampleReply:
    y: int = 0


@dataclass
class WorkerArgs:
    worker_id: int = 0
    worker_state: WorkerState = WorkerState.INIT
    task: Task | None = None


@dataclass
class WorkerReply:
    worker_id: int = 0
    worker_state: WorkerState = WorkerState.INIT
    task: Task | None = None


def coordinator_sock():
    """Per-user UNIX-domain socket path for the coordinator."""
    return "/var/tmp/5840-mr-" + str(os.getuid())


for _cls in (
    WorkerState,
    TaskType,
    TaskState,
    Task,
    ExampleArgs,
    ExampleReply,
    WorkerArgs,
    WorkerReply,
):
    labgob.register(_cls)