"""Test harness for the key/value server on a simulated network."""

import base64
import os
import threading
import time
from dataclasses import dataclass

from distlab.kvsrv.client import Clerk
from distlab.kvsrv.server import KVServer
from distlab.labrpc import Network, Server, Service

__all__ = ["SERVER_ID", "Cluster", "ClusterTimeout", "RunStats", "randstring"]

SERVER_ID = 0


class ClusterTimeout(RuntimeError):
    """A test ran longer than its real-time limit."""


@dataclass(frozen=True)
class RunStats:
    seconds: float
    rpcs: int
    ops: int


def randstring(n):
    """A random URL-safe string of length n."""
    return base64.urlsafe_b64encode(os.urandom(2 * n)).decode("ascii")[:n]


class Cluster:
    """One key/value server on a network, with clerks that talk to it."""

    def __init__(self, unreliable=False, time_limit=120.0, clerk_interval=0.5):
        self._lock = threading.Lock()
        self.network = Network()
        self.kvserver = None
        self._clerks = {}
        self._next_client_id = SERVER_ID + 1
        self._time_limit = time_limit
        self._clerk_interval = clerk_interval
        self._start = time.monotonic()
        self._t0 = self._start
        self._rpcs0 = 0
        self._ops = 0
        self.start_server()
        self.network.set_reliable(not unreliable)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        with self._lock:
            self.network.cleanup()
        if exc_type is None:
            self._check_timeout()
        return False

    def _check_timeout(self):
        if time.monotonic() - self._start > self._time_limit:
            raise ClusterTimeout(f"test took longer than {self._time_limit} seconds")

    def cleanup(self):
        """Shut the network down and enforce the time limit."""
        with self._lock:
            self.network.cleanup()
        self._check_timeout()

    def make_client(self):
        """Create a clerk with its own end-point to the server."""
        with self._lock:
            endname = randstring(20)
            end = self.network.make_end(endname)
            self.network.connect(endname, SERVER_ID)
            clerk = Clerk(end, interval=self._clerk_interval)
            self._clerks[clerk] = endname
            self._next_client_id += 1
            self.network.enable(endname, True)
            return clerk

    def delete_client(self, clerk):
        with self._lock:
            endname = self._clerks.pop(clerk)
            self.network.delete_end(endname)

    def connect_client(self, clerk):
        with self._lock:
            self.network.enable(self._clerks[clerk], True)

    def start_server(self):
        self.kvserver = KVServer()
        server = Server()
        server.add_service(Service(self.kvserver))
        self.network.add_server(SERVER_ID, server)

    def rpc_total(self):
        return self.network.total_count()

    def begin(self, description):
        """Start a test: print its description and reset the statistics."""
        print(f"{description} ...")
        with self._lock:
            self._t0 = time.monotonic()
            self._ops = 0
        self._rpcs0 = self.rpc_total()

    def op(self):
        """Count one clerk operation."""
        with self._lock:
            self._ops += 1

    def end(self):
        """Finish a test: print and return its statistics."""
        self._check_timeout()
        with self._lock:
            stats = RunStats(
                seconds=time.monotonic() - self._t0,
                rpcs=self.rpc_total() - self._rpcs0,
                ops=self._ops,
            )
        print(f"  ... Passed -- t {stats.seconds:4.1f} nrpc {stats.rpcs:5d} ops {stats.ops:4d}")
        return stats