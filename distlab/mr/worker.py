"""MapReduce worker: asks the coordinator for tasks and runs them."""

import io
import itertools
import json
import logging
import operator
import re
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from distlab import labgob
from distlab.mr.rpc import (
    ExampleArgs,
    TaskType,
    WorkerArgs,
    WorkerState,
    coordinator_sock,
)

__all__ = [
    "KeyValue",
    "call",
    "call_example",
    "ihash",
    "partition",
    "read_all_key_values",
    "worker",
    "write_partitions",
    "write_reduce_output",
]

_log = logging.getLogger(__name__)

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193
_WHITESPACE = re.compile(r"\s*")


@dataclass(frozen=True)
class KeyValue:
    """One key/value pair emitted by a map function."""

    key: str
    value: str


def ihash(key):
    """Non-negative 32-bit FNV-1a hash of a key, used to pick its reduce task."""
    h = _FNV_OFFSET
    for byte in key.encode("utf-8"):
        h = ((h ^ byte) * _FNV_PRIME) & 0xFFFFFFFF
    return h & 0x7FFFFFFF


def partition(intermediate, n_reduce):
    """Split pairs into n_reduce buckets by the hash of their keys."""
    buckets = [[] for _ in range(n_reduce)]
    for kv in intermediate:
        buckets[ihash(kv.key) % n_reduce].append(kv)
    return buckets


def write_partitions(partitioned, task):
    """Write each bucket to mr-<task>-<bucket>.tmp as one JSON object per line."""
    for i, bucket in enumerate(partitioned):
        with open(f"mr-{task.task_id}-{i}.tmp", "w", encoding="utf-8", newline="") as out:
            for kv in bucket:
                out.write(
                    json.dumps(
                        {"Key": kv.key, "Value": kv.value},
                        separators=(",", ":"),
                        ensure_ascii=False,
                    )
                    + "\n"
                )


def read_all_key_values(filenames):
    """Read pairs from intermediate files, skipping unreadable files.

    Reading a file stops at the first value that is not a key/value object.
    """
    decoder = json.JSONDecoder()
    kva = []
    for filename in filenames:
        try:
            text = Path(filename).read_text(encoding="utf-8")
        except OSError:
            continue
        pos = 0
        while True:
            pos = _WHITESPACE.match(text, pos).end()
            if pos >= len(text):
                break
            try:
                obj, pos = decoder.raw_decode(text, pos)
            except json.JSONDecodeError:
                break
            if not isinstance(obj, dict):
                break
            key, value = obj.get("Key", ""), obj.get("Value", "")
            if not isinstance(key, str) or not isinstance(value, str):
                break
            kva.append(KeyValue(key, value))
    return kva


def write_reduce_output(kva, task, reducef):
    """Reduce each run of equal keys and write mr-out-<task>; returns its name.

    ``kva`` must already be sorted by key.
    """
    name = f"mr-out-{task.task_id}"
    with open(name, "w", encoding="utf-8", newline="") as out:
        for key, group in itertools.groupby(kva, key=operator.attrgetter("key")):
            output = reducef(key, [kv.value for kv in group])
            out.write(f"{key} {output}\n")
    return name


def _map_task(mapf, task):
    filename = task.input[0]
    try:
        content = Path(filename).read_text(encoding="utf-8")
    except OSError:
        content = ""
    intermediate = mapf(filename, content)
    write_partitions(partition(intermediate, task.n_reduce), task)


def _reduce_task(reducef, task):
    kva = read_all_key_values(task.input)
    kva.sort(key=operator.attrgetter("key"))
    write_reduce_output(kva, task, reducef)


def _report_task_done(task, sockname):
    try:
        call(
            "Coordinator.done_handler",
            WorkerArgs(worker_state=WorkerState.DONE, task=task),
            sockname,
        )
    except RuntimeError:
        _log.error("call failed!")


def worker(mapf, reducef, sockname=None):
    """Run tasks from the coordinator until it reports the job is done.

    Raises ConnectionError if the coordinator cannot be reached.
    """
    while True:
        try:
            reply = call("Coordinator.worker_handler", WorkerArgs(), sockname)
        except RuntimeError:
            _log.error("call failed!")
            return
        if reply.worker_state == WorkerState.DONE:
            return
        task = reply.task
        if task is None:
            continue
        if task.task_type == TaskType.MAP:
            _map_task(mapf, task)
        else:
            _reduce_task(reducef, task)
        _report_task_done(task, sockname)


def call(rpcname, args, sockname=None):
    """Send one RPC to the coordinator and return its reply.

    Raises ConnectionError if the coordinator cannot be reached, and
    RuntimeError if the call itself fails.
    """
    path = sockname or coordinator_sock()
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(path)
    except OSError as exc:
        sock.close()
        raise ConnectionError(f"dialing: {exc}") from exc
    with sock:
        try:
            request = io.BytesIO()
            encoder = labgob.Encoder(request)
            encoder.encode(rpcname)
            encoder.encode(args)
            sock.sendall(request.getvalue())
            with sock.makefile("rb") as reader:
                decoder = labgob.Decoder(reader)
                ok = decoder.decode(bool)
                if ok:
                    return decoder.decode(Any)
                message = decoder.decode(str)
        except (OSError, EOFError, ValueError) as exc:
            raise RuntimeError(f"call {rpcname} failed: {exc}") from exc
    _log.error("%s", message)
    raise RuntimeError(message)


def call_example(sockname=None):
    """Send the example RPC and print its result; returns the reply or None."""
    try:
        reply = call("Coordinator.example", ExampleArgs(x=99), sockname)
    except RuntimeError:
        print("call failed!")
        return None
    print(f"reply.Y {reply.y}")
    return reply