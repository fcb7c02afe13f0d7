"""Client of the single-server key/value store."""

import queue
import secrets
import threading

from distlab.kvsrv.server import Err, GetArgs, PutAppendArgs
from distlab.labrpc import RPCFailure

__all__ = ["Clerk", "nrand"]

_METHODS = {"Put": "KVServer.put", "Append": "KVServer.append"}


def nrand():
    """A random non-negative 62-bit integer."""
    return secrets.randbelow(1 << 62)


class Clerk:
    """Sends requests to one server, retrying until each succeeds."""

    def __init__(self, server, interval=0.5):
        self._server = server
        self.client_id = nrand()
        self._req_id = 0
        self._req_lock = threading.Lock()
        self._interval = interval

    def _next_request_id(self):
        with self._req_lock:
            self._req_id += 1
            return self._req_id

    def _attempt(self, svc_meth, args, results):
        try:
            reply = self._server.call(svc_meth, args)
        except RPCFailure:
            reply = None
        results.put(reply)

    def _call_until_done(self, svc_meth, args):
        while True:
            results = queue.Queue(maxsize=1)
            threading.Thread(
                target=self._attempt, args=(svc_meth, args, results), daemon=True
            ).start()
            try:
                reply = results.get(timeout=self._interval)
            except queue.Empty:
                continue
            if reply is not None and reply.err in (Err.OK, Err.ERR_NO_KEY):
                return reply.value

    def get(self, key):
        """Current value of a key, or "" if it does not exist."""
        args = GetArgs(key, self.client_id, self._next_request_id())
        return self._call_until_done("KVServer.get", args)

    def put_append(self, key, value, op):
        """Send a "Put" or "Append"; returns the value the server replied with."""
        if op not in _METHODS:
            raise ValueError(f"unknown operation {op!r}")
        args = PutAppendArgs(key, value, op, self.client_id, self._next_request_id())
        return self._call_until_done(_METHODS[op], args)

    def put(self, key, value):
        self.put_append(key, value, "Put")

    def append(self, key, value):
        """Append to a key's value and return the value it had before."""
        return self.put_append(key, value, "Append")