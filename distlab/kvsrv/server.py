"""Single-server key/value store with at-most-once Put and Append."""

import threading
from dataclasses import dataclass
from enum import Enum

__all__ = [
    "Err",
    "GetArgs",
    "GetReply",
    "KVServer",
    "PutAppendArgs",
    "PutAppendReply",
]


class Err(str, Enum):
    OK = "OK"
    ERR_NO_KEY = "ErrNoKey"


@dataclass
class PutAppendArgs:
    """Arguments of a Put or Append request."""

    key: str = ""
    value: str = ""
    op: str = ""  # "Put" or "Append"
    client_id: int = 0
    req_id: int = 0


@dataclass
class PutAppendReply:
    err: Err = Err.OK
    value: str = ""


@dataclass
class GetArgs:
    key: str = ""
    client_id: int = 0
    req_id: int = 0


@dataclass
class GetReply:
    err: Err = Err.OK
    value: str = ""


class KVServer:
    """Key/value store that remembers each client's latest request.

    A Put or Append whose request id is not newer than the last one seen from
    the same client is not applied again; a repeated Append answers with the
    value it answered the first time.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._store = {}
        self._client_ops = {}  # client id -> last request id
        self._client_logs = {}  # client id -> {request id: value before the append}

    def _is_duplicate(self, args):
        return self._client_ops.get(args.client_id, 0) >= args.req_id

    def get(self, args):
        """Return the value of a key, or ErrNoKey with an empty value."""
        with self._lock:
            if args.key in self._store:
                return GetReply(Err.OK, self._store[args.key])
            return GetReply(Err.ERR_NO_KEY, "")

    def put(self, args):
        """Set a key's value."""
        with self._lock:
            if not self._is_duplicate(args):
                self._store[args.key] = args.value
                self._client_ops[args.client_id] = args.req_id
            return PutAppendReply(Err.OK)

    def append(self, args):
        """Append to a key's value and return the value it had before."""
        with self._lock:
            if self._is_duplicate(args):
                old = self._client_logs.get(args.client_id, {}).get(args.req_id, "")
                return PutAppendReply(Err.OK, old)
            old = self._store.get(args.key, "")
            self._client_logs[args.client_id] = {args.req_id: old}
            self._store[args.key] = old + args.value
            self._client_ops[args.client_id] = args.req_id
            return PutAppendReply(Err.OK, old)