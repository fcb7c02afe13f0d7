"""In-process RPC over a simulated network.

The network can lose requests and replies, delay messages and disconnect
individual client end-points. Arguments and replies are passed through the
labgob encoding, so a handler never shares objects with its caller.

    net = Network()
    end = net.make_end("end1")
    server = Server()
    server.add_service(Service(receiver))
    net.add_server("server1", server)
    net.connect("end1", "server1")
    net.enable("end1", True)
    reply = end.call("Receiver.method", args)

A service exposes every public method of its receiver that takes exactly one
argument besides ``self``; the method's return value is the reply.
``ClientEnd.call`` raises ``RPCFailure`` when no reply arrives, whether the
request or reply was lost or the server is down.
"""

import inspect
import io
import queue
import random
import threading
import time
from dataclasses import dataclass

from distlab import labgob

__all__ = ["ClientEnd", "Network", "RPCFailure", "Server", "Service"]

_POLL_INTERVAL = 0.1


class RPCFailure(ConnectionError):
    """No reply was received for an RPC."""


@dataclass(frozen=True)
class _Request:
    endname: object
    svc_meth: str
    args_type: type
    args: bytes


@dataclass(frozen=True)
class _Reply:
    payload: bytes
    reply_type: type
    error: BaseException | None = None


def _encode(value):
    buf = io.BytesIO()
    labgob.Encoder(buf).encode(value)
    return buf.getvalue()


def _decode(data, hint):
    return labgob.Decoder(io.BytesIO(data)).decode(hint)


class ClientEnd:
    """A client end-point that talks to one server through the network."""

    def __init__(self, endname, network):
        self._endname = endname
        self._network = network

    @property
    def name(self):
        return self._endname

    def call(self, svc_meth, args):
        """Send an RPC such as "Service.method" and wait for its reply.

        Returns the decoded reply; raises RPCFailure if none was received.
        """
        request = _Request(self._endname, svc_meth, type(args), _encode(args))
        reply = self._network._process(request)
        if reply.error is not None:
            raise reply.error
        return _decode(reply.payload, reply.reply_type)


class Network:
    """Holds client end-points, servers and the connections between them."""

    def __init__(self):
        self._lock = threading.Lock()
        self._reliable = True
        self._long_delays = False
        self._long_reordering = False
        self._ends = {}
        self._enabled = {}
        self._servers = {}
        self._connections = {}
        self._done = threading.Event()
        self._count = 0
        self._bytes = 0

    def cleanup(self):
        """Shut the network down; later calls fail at once."""
        self._done.set()

    def set_reliable(self, yes):
        with self._lock:
            self._reliable = yes

    def set_long_reordering(self, yes):
        with self._lock:
            self._long_reordering = yes

    def set_long_delays(self, yes):
        with self._lock:
            self._long_delays = yes

    def make_end(self, endname):
        """Create a disabled, unconnected client end-point."""
        with self._lock:
            if endname in self._ends:
                raise ValueError(f"make_end: {endname!r} already exists")
            end = ClientEnd(endname, self)
            self._ends[endname] = end
            self._enabled[endname] = False
            self._connections[endname] = None
            return end

    def delete_end(self, endname):
        with self._lock:
            if endname not in self._ends:
                raise KeyError(f"delete_end: {endname!r} doesn't exist")
            del self._ends[endname]
            self._enabled.pop(endname, None)
            self._connections.pop(endname, None)

    def add_server(self, servername, server):
        with self._lock:
            self._servers[servername] = server

    def delete_server(self, servername):
        with self._lock:
            self._servers[servername] = None

    def connect(self, endname, servername):
        """Connect a client end-point to a server."""
        with self._lock:
            self._connections[endname] = servername

    def enable(self, endname, enabled):
        with self._lock:
            self._enabled[endname] = enabled

    def count(self, servername):
        """Number of RPCs the named server has received."""
        with self._lock:
            server = self._servers.get(servername)
        if server is None:
            raise KeyError(f"no server named {servername!r}")
        return server.count

    def total_count(self):
        with self._lock:
            return self._count

    def total_bytes(self):
        with self._lock:
            return self._bytes

    def _read_end_info(self, endname):
        with self._lock:
            servername = self._connections.get(endname)
            server = self._servers.get(servername) if servername is not None else None
            return (
                self._enabled.get(endname, False),
                servername,
                server,
                self._reliable,
                self._long_reordering,
                self._long_delays,
            )

    def _is_server_dead(self, endname, servername, server):
        with self._lock:
            return not self._enabled.get(endname, False) or self._servers.get(servername) is not server

    def _process(self, request):
        if self._done.is_set():
            raise RPCFailure("network has been shut down")
        with self._lock:
            self._count += 1
            self._bytes += len(request.args)

        enabled, servername, server, reliable, long_reordering, long_delays = self._read_end_info(
            request.endname
        )

        if not (enabled and servername is not None and server is not None):
            # simulate no reply and an eventual timeout
            delay_ms = random.randrange(7000) if long_delays else random.randrange(100)
            time.sleep(delay_ms / 1000)
            raise RPCFailure("no reply from server")

        if not reliable:
            time.sleep(random.randrange(27) / 1000)
            if random.randrange(1000) < 100:
                raise RPCFailure("request lost")

        reply = self._run_handler(request, servername, server)

        if not reliable and random.randrange(1000) < 100:
            raise RPCFailure("reply lost")
        if long_reordering and random.randrange(900) < 600:
            delay_ms = 200 + random.randint(0, random.randrange(2000))
            time.sleep(delay_ms / 1000)
        with self._lock:
            self._bytes += len(reply.payload)
        return reply

    def _run_handler(self, request, servername, server):
        results = queue.Queue(maxsize=1)

        def run():
            try:
                results.put(server._dispatch(request))
            except BaseException as exc:  # handed to the caller
                results.put(_Reply(b"", type(None), exc))

        threading.Thread(target=run, daemon=True).start()

        reply = None
        dead = False
        while reply is None and not dead:
            try:
                reply = results.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                dead = self._is_server_dead(request.endname, servername, server)

        # never answer for a deleted server, even if its handler finished
        dead = self._is_server_dead(request.endname, servername, server)
        if reply is None or dead:
            raise RPCFailure("server is gone")
        return reply


class Server:
    """A collection of services sharing one RPC dispatcher."""

    def __init__(self):
        self._lock = threading.Lock()
        self._services = {}
        self._count = 0

    def add_service(self, service):
        with self._lock:
            self._services[service.name] = service

    @property
    def count(self):
        """Number of incoming RPCs."""
        with self._lock:
            return self._count

    def _dispatch(self, request):
        service_name, _, method_name = request.svc_meth.rpartition(".")
        with self._lock:
            self._count += 1
            service = self._services.get(service_name)
            choices = sorted(self._services)
        if service is None:
            raise LookupError(
                f"unknown service {service_name!r} in {request.svc_meth!r}; "
                f"expecting one of {choices}"
            )
        return service._dispatch(method_name, request)


_VARIADIC = inspect.CO_VARARGS | inspect.CO_VARKEYWORDS


def _is_handler(function):
    """True for a function taking ``self`` and exactly one positional argument."""
    code = getattr(function, "__code__", None)
    if code is None:
        return False
    return code.co_argcount == 2 and code.co_kwonlyargcount == 0 and not code.co_flags & _VARIADIC


class Service:
    """An object whose one-argument public methods handle RPCs."""

    def __init__(self, receiver):
        self._receiver = receiver
        self.name = type(receiver).__name__
        self.methods = frozenset(
            method_name
            for method_name, function in inspect.getmembers(type(receiver), inspect.isfunction)
            if not method_name.startswith("_") and _is_handler(function)
        )

    def _dispatch(self, method_name, request):
        if method_name not in self.methods:
            raise LookupError(
                f"unknown method {method_name!r} in {request.svc_meth!r}; "
                f"expecting one of {sorted(self.methods)}"
            )
        args = _decode(request.args, request.args_type)
        result = getattr(self._receiver, method_name)(args)
        return _Reply(_encode(result), type(result))