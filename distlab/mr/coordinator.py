"""MapReduce coordinator: hands out tasks to workers and tracks their progress."""

import contextlib
import copy
import logging
import os
import socketserver
import threading
import time
from collections import deque
from enum import IntEnum

from distlab import labgob
from distlab.mr.rpc import (
    ExampleArgs,
    ExampleReply,
    Task,
    TaskState,
    TaskType,
    WorkerArgs,
    WorkerReply,
    WorkerState,
    coordinator_sock,
)

__all__ = ["Coordinator", "SysState", "make_coordinator"]

_log = logging.getLogger(__name__)


class SysState(IntEnum):
    MAP = 0
    REDUCE = 1
    DONE = 2


class _Handler(socketserver.StreamRequestHandler):
    """Serves one RPC per connection."""

    def handle(self):
        coordinator = self.server.coordinator
        decoder = labgob.Decoder(self.rfile)
        encoder = labgob.Encoder(self.wfile)
        try:
            rpcname = decoder.decode(str)
            reply = coordinator._handle_rpc(rpcname, decoder)
        except Exception as exc:  # reported to the caller
            _log.debug("rpc failed: %s", exc)
            encoder.encode(False)
            encoder.encode(str(exc))
        else:
            encoder.encode(True)
            encoder.encode(reply)


class _RPCServer(socketserver.ThreadingUnixStreamServer):
    daemon_threads = True

    def __init__(self, path, coordinator):
        self.coordinator = coordinator
        super().__init__(path, _Handler)


class Coordinator:
    """Runs a job of one map task per input file and ``n_reduce`` reduce tasks."""

    def __init__(self, files, n_reduce, sockname=None, timeout=10.0):
        self._lock = threading.Lock()
        self.n_map = len(files)
        self.n_reduce = n_reduce
        self.timeout = timeout
        self.sockname = sockname or coordinator_sock()
        self._state = SysState.MAP
        self._done_map = 0
        self._done_reduce = 0
        self._map_tasks = {}
        self._reduce_tasks = {}
        self._pending_map = deque()
        self._pending_reduce = deque()
        self._server = None
        self._thread = None
        self._methods = {
            "Coordinator.worker_handler": (self.worker_handler, WorkerArgs),
            "Coordinator.done_handler": (self.done_handler, WorkerArgs),
            "Coordinator.example": (self.example, ExampleArgs),
        }

        now = time.monotonic()
        for task_id, filename in enumerate(files):
            task = Task(task_id, TaskType.MAP, TaskState.INIT, n_reduce, now, [filename])
            self._pending_map.append(task)
            self._map_tasks[task_id] = task

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def state(self):
        with self._lock:
            return self._state

    def worker_handler(self, args):
        """Hand a task to a worker; the reply has no task when none is ready."""
        with self._lock:
            if self._state is SysState.DONE:
                return WorkerReply(worker_state=WorkerState.DONE)
            if self._state is SysState.MAP:
                pending, tasks = self._pending_map, self._map_tasks
            else:
                pending, tasks = self._pending_reduce, self._reduce_tasks
            if pending:
                task = pending.popleft()
                self._set_running(task)
            else:
                task = self._reclaim(tasks)
            return WorkerReply(task=copy.deepcopy(task) if task is not None else None)

    def _set_running(self, task):
        task.task_state = TaskState.RUN
        task.start_time = time.monotonic()

    def _reclaim(self, tasks):
        """Reassign a task that has run too long; forget finished ones."""
        now = time.monotonic()
        for task_id, task in list(tasks.items()):
            if task.task_state is TaskState.RUN and now - task.start_time > self.timeout:
                self._set_running(task)
                return task
            if task.task_state is TaskState.DONE:
                del tasks[task_id]
        return None

    def done_handler(self, args):
        """Record that a worker finished the task it carries."""
        if args.task is None:
            raise ValueError("done report carries no task")
        with self._lock:
            self._set_task_done(args.task)
            if self._state is SysState.MAP:
                if self._done_map == self.n_map:
                    self._map_to_reduce()
            elif self._done_reduce == self.n_reduce:
                self._state = SysState.DONE
        return WorkerReply()

    def _set_task_done(self, task):
        if task.task_state is not TaskState.RUN:
            return
        tasks = self._map_tasks if task.task_type is TaskType.MAP else self._reduce_tasks
        record = tasks.get(task.task_id)
        if record is None or record.task_state is TaskState.DONE:
            return
        task.task_state = TaskState.DONE
        record.task_state = TaskState.DONE
        if task.task_type is TaskType.MAP:
            self._done_map += 1
        else:
            self._done_reduce += 1

    def _map_to_reduce(self):
        self._state = SysState.REDUCE
        now = time.monotonic()
        for i in range(self.n_reduce):
            inputs = [f"mr-{j}-{i}.tmp" for j in range(self.n_map)]
            task = Task(i, TaskType.REDUCE, TaskState.INIT, self.n_reduce, now, inputs)
            self._pending_reduce.append(task)
            self._reduce_tasks[i] = task

    def example(self, args):
        return ExampleReply(y=args.x + 1)

    def _handle_rpc(self, rpcname, decoder):
        entry = self._methods.get(rpcname)
        if entry is None:
            raise LookupError(f"rpc: can't find method {rpcname}")
        handler, args_type = entry
        return handler(decoder.decode(args_type))

    def serve(self):
        """Start answering RPCs on the coordinator's UNIX-domain socket."""
        if self._server is not None:
            raise RuntimeError("coordinator is already serving")
        with contextlib.suppress(FileNotFoundError):
            os.remove(self.sockname)
        self._server = _RPCServer(self.sockname, self)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def done(self):
        """True once every reduce task has finished."""
        with self._lock:
            return self._state is SysState.DONE

    def close(self):
        """Stop serving RPCs and remove the socket."""
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        with contextlib.suppress(FileNotFoundError):
            os.remove(self.sockname)


def make_coordinator(files, n_reduce, sockname=None):
    """Create a coordinator and start serving RPCs."""
    coordinator = Coordinator(files, n_reduce, sockname)
    coordinator.serve()
    return coordinator