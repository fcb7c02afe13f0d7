import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import pytest

from distlab.labrpc import ClientEnd, Network, RPCFailure, Server, Service


@dataclass
class JunkArgs:
    x: int = 0


@dataclass
class JunkReply:
    x: str = ""


class JunkServer:
    def __init__(self):
        self._lock = threading.Lock()
        self.log1 = []
        self.log2 = []
        self.release = threading.Event()

    def handler1(self, args):
        with self._lock:
            self.log1.append(args)
            return int(args)

    def handler2(self, args):
        with self._lock:
            self.log2.append(args)
            return f"handler2-{args}"

    def handler3(self, args):
        self.release.wait(20)
        return -args

    def handler4(self, args):
        return JunkReply("pointer" if isinstance(args, JunkArgs) else "wrong")

    def handler5(self, args):
        return JunkReply(f"no pointer {args.x}")

    def handler6(self, args):
        with self._lock:
            return len(args)

    def handler7(self, args):
        with self._lock:
            return "y" * args

    def broken(self, args):
        raise ValueError(f"bad {args}")

    def not_a_handler(self, a, b):
        return a + b


@pytest.fixture
def network():
    net = Network()
    yield net
    net.cleanup()


def serve(network, name):
    junk = JunkServer()
    server = Server()
    server.add_service(Service(junk))
    network.add_server(name, server)
    return junk


def connected_end(network, endname, servername):
    end = network.make_end(endname)
    network.connect(endname, servername)
    network.enable(endname, True)
    return end


def test_basic(network):
    serve(network, "server99")
    end = connected_end(network, "end1-99", "server99")
    assert end.call("JunkServer.handler2", 111) == "handler2-111"
    assert end.call("JunkServer.handler1", "9099") == 9099


def test_types(network):
    serve(network, "server99")
    end = connected_end(network, "end1-99", "server99")
    assert end.call("JunkServer.handler4", JunkArgs()) == JunkReply("pointer")
    assert end.call("JunkServer.handler5", JunkArgs(7)) == JunkReply("no pointer 7")


def test_disconnect(network):
    serve(network, "server99")
    end = network.make_end("end1-99")
    network.connect("end1-99", "server99")
    with pytest.raises(RPCFailure):
        end.call("JunkServer.handler2", 111)
    network.enable("end1-99", True)
    assert end.call("JunkServer.handler1", "9099") == 9099


def test_counts(network):
    serve(network, 99)
    end = connected_end(network, "end1-99", 99)
    for i in range(17):
        assert end.call("JunkServer.handler2", i) == f"handler2-{i}"
    assert network.count(99) == 17
    assert network.total_count() == 17


def test_bytes(network):
    serve(network, 99)
    end = connected_end(network, "end1-99", 99)
    for _ in range(17):
        args = "x" * 73
        args = args + args
        args = args + args
        assert end.call("JunkServer.handler6", args) == len(args)
    n = network.total_bytes()
    assert 4828 <= n <= 6000

    for _ in range(17):
        assert len(end.call("JunkServer.handler7", 107)) == 107
    nn = network.total_bytes() - n
    assert 1800 <= nn <= 2500


def test_concurrent_many(network):
    serve(network, 1000)
    nclients, nrpcs = 20, 10

    def client(i):
        end = connected_end(network, i, 1000)
        done = 0
        for j in range(nrpcs):
            arg = i * 100 + j
            assert end.call("JunkServer.handler2", arg) == f"handler2-{arg}"
            done += 1
        return done

    with ThreadPoolExecutor(max_workers=nclients) as pool:
        total = sum(pool.map(client, range(nclients)))
    assert total == nclients * nrpcs
    assert network.count(1000) == total


def test_unreliable(network):
    network.set_reliable(False)
    serve(network, 1000)
    nclients = 300

    def client(i):
        end = connected_end(network, i, 1000)
        arg = i * 100
        try:
            return arg, end.call("JunkServer.handler2", arg)
        except RPCFailure:
            return arg, None

    with ThreadPoolExecutor(max_workers=50) as pool:
        results = list(pool.map(client, range(nclients)))

    successes = [(arg, reply) for arg, reply in results if reply is not None]
    assert [reply for _, reply in successes] == [f"handler2-{arg}" for arg, _ in successes]
    assert 0 < len(successes) < nclients


def test_concurrent_one(network):
    junk = serve(network, 1000)
    end = connected_end(network, "c", 1000)
    nrpcs = 20

    def client(i):
        arg = 100 + i
        assert end.call("JunkServer.handler2", arg) == f"handler2-{arg}"
        return 1

    with ThreadPoolExecutor(max_workers=nrpcs) as pool:
        total = sum(pool.map(client, range(nrpcs)))
    assert total == nrpcs
    assert len(junk.log2) == nrpcs
    assert network.count(1000) == total


def test_regression_delayed_rpc_does_not_block_later_ones(network):
    junk = serve(network, 1000)
    end = network.make_end("c")
    network.connect("c", 1000)
    network.enable("c", False)
    nrpcs = 20

    with ThreadPoolExecutor(max_workers=nrpcs) as pool:
        futures = [pool.submit(end.call, "JunkServer.handler2", 100 + i) for i in range(nrpcs)]
        time.sleep(0.1)

        t0 = time.monotonic()
        network.enable("c", True)
        assert end.call("JunkServer.handler2", 99) == "handler2-99"
        assert time.monotonic() - t0 < 0.1

        for future in futures:
            with pytest.raises(RPCFailure):
                future.result(timeout=5)

    assert junk.log2 == [99]
    assert network.count(1000) == 1


def test_killed(network):
    junk = serve(network, "server99")
    end = connected_end(network, "end1-99", "server99")
    try:
        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(end.call, "JunkServer.handler3", 99)
            time.sleep(0.3)
            assert not future.done()
            network.delete_server("server99")
            with pytest.raises(RPCFailure):
                future.result(timeout=0.5)
    finally:
        junk.release.set()


def test_benchmark_many_calls(network):
    serve(network, "server99")
    end = connected_end(network, "end1-99", "server99")
    replies = {end.call("JunkServer.handler2", 111) for _ in range(1000)}
    assert replies == {"handler2-111"}
    assert network.count("server99") == 1000


def test_long_reordering_still_delivers(network):
    network.set_long_reordering(True)
    serve(network, "s")
    end = connected_end(network, "e", "s")
    assert end.call("JunkServer.handler2", 5) == "handler2-5"


def test_service_name_and_methods():
    service = Service(JunkServer())
    assert service.name == "JunkServer"
    assert "handler2" in service.methods
    assert "not_a_handler" not in service.methods
    assert "__init__" not in service.methods


def test_make_end_twice_raises(network):
    end = network.make_end("dup")
    assert end.name == "dup"
    with pytest.raises(ValueError):
        network.make_end("dup")


def test_delete_end(network):
    network.make_end("gone")
    network.delete_end("gone")
    with pytest.raises(KeyError):
        network.delete_end("gone")
    assert network.make_end("gone").name == "gone"


def test_unknown_method_raises(network):
    serve(network, "s")
    end = connected_end(network, "e", "s")
    with pytest.raises(LookupError):
        end.call("JunkServer.nothing", 1)
    with pytest.raises(LookupError):
        end.call("Nobody.handler2", 1)


def test_handler_error_reaches_caller(network):
    serve(network, "s")
    end = connected_end(network, "e", "s")
    with pytest.raises(ValueError, match="bad 3"):
        end.call("JunkServer.broken", 3)


def test_call_after_cleanup_fails():
    net = Network()
    serve(net, "s")
    end = connected_end(net, "e", "s")
    net.cleanup()
    with pytest.raises(RPCFailure):
        end.call("JunkServer.handler2", 1)
    assert net.total_count() == 0


def test_count_of_missing_server_raises(network):
    with pytest.raises(KeyError):
        network.count("absent")


def test_deleted_server_gives_no_reply(network):
    serve(network, "s")
    end = connected_end(network, "e", "s")
    assert end.call("JunkServer.handler2", 1) == "handler2-1"
    network.delete_server("s")
    with pytest.raises(RPCFailure):
        end.call("JunkServer.handler2", 2)


def test_client_end_is_returned_by_make_end(network):
    end = network.make_end("x")
    assert isinstance(end, ClientEnd) and end.name == "x"