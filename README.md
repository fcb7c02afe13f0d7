# distlab

A small toolkit for experimenting with distributed systems in pure Python.
It has no third-party dependencies.

## What is inside

- `distlab.labgob` – `Encoder` and `Decoder` for values sent over RPC or
  persisted. Values are written as length-prefixed, self-describing records,
  so a decoded value never shares objects with the original. Dataclass
  fields whose names start with an underscore are not transmitted and are
  reported once per type; decoding into a template instance that already
  holds non-default values is reported too. `error_count()` tells how many
  such problems have been reported. Classes that must be decodable by name
  are made known with `register` or `register_name`.
- `distlab.labrpc` – an in-process simulated network. A `Network` holds
  client end-points (`make_end`, `delete_end`), servers (`add_server`,
  `delete_server`) and the links between them (`connect`, `enable`). It can
  lose, delay and reorder messages (`set_reliable`, `set_long_delays`,
  `set_long_reordering`) and keeps RPC and byte counts (`count`,
  `total_count`, `total_bytes`). A `Server` groups several `Service`
  objects; a service exposes every public method of its receiver that takes
  one argument, and the method's return value is the reply.
  `ClientEnd.call("Receiver.method", args)` returns the reply, or raises
  `RPCFailure` when none arrives.
- `distlab.models` – a key/value model (`partition`, `initial_state`,
  `step`, `describe_operation`) over `Operation` records of `KvInput` and
  `KvOutput`, for checking recorded histories for linearizability.
- `distlab.kvstate` – an in-memory key/value state machine
  (`MemoryKVStateMachine` with `get`, `put`, `append`, `clone`) and the
  command, reply and snapshot records of a replicated key/value service.
- `distlab.kvsrv` – a single-server key/value service:
  - `server.KVServer` applies each client's `put` and `append` at most once;
    a repeated append answers with the value it answered the first time.
  - `client.Clerk` retries each request until it succeeds; `append` returns
    the value the key had before.
  - `cluster.Cluster` wires a server and clerks together over a simulated
    network, optionally unreliable, and keeps test statistics (`begin`,
    `op`, `end`). It is a context manager and raises `ClusterTimeout` when a
    test runs past its time limit.
- `distlab.mr` – MapReduce:
  - `coordinator.Coordinator` makes one map task per input file and a given
    number of reduce tasks, serves them to workers over a UNIX-domain socket,
    and hands out again any task that has run longer than its timeout
    (10 seconds by default). `make_coordinator(files, n_reduce, sockname)`
    creates one and starts serving.
  - `worker.worker(mapf, reducef, sockname)` asks for tasks and runs them
    until the coordinator reports the job is done.
  - `rpc` holds the messages between them; `coordinator_sock()` gives the
    default per-user socket path.
- `distlab.mrapps` – MapReduce applications, each with `map_fn` and
  `reduce_fn`: `wc` (word count), `indexer` (inverted index), and `crash`,
  `nocrash`, `early_exit`, `jobcount`, `mtiming` and `rtiming` for
  exercising fault tolerance and parallelism.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## A key/value service on a simulated network

```python
from distlab.kvsrv.cluster import Cluster

with Cluster(unreliable=True) as cluster:
    clerk = cluster.make_client()
    clerk.put("k", "a")
    previous = clerk.append("k", "b")   # "a"
    value = clerk.get("k")              # "ab"
```

## Running a MapReduce job

Start a coordinator, then run workers in threads or other processes that
can reach the same socket. Map tasks write intermediate files
`mr-<map>-<reduce>.tmp` in the current directory; reduce task `n` writes
`mr-out-<n>`, one `key value` line per key.

```python
import threading
import time

from distlab.mr.coordinator import make_coordinator
from distlab.mr.worker import worker
from distlab.mrapps import wc

sock = "/tmp/wc-demo.sock"
with make_coordinator(["pg-1.txt", "pg-2.txt"], 10, sock) as coordinator:
    workers = [
        threading.Thread(target=worker, args=(wc.map_fn, wc.reduce_fn, sock))
        for _ in range(3)
    ]
    for t in workers:
        t.start()
    while not coordinator.done():
        time.sleep(1)
    for t in workers:
        t.join()
```

A key is assigned to a reduce task with
`distlab.mr.worker.ihash(key) % n_reduce`, so a given key always lands in
the same output file.

## What it does not do

- It installs no commands. There is no command-line program to start a
  coordinator or a worker, and no way to pick an application by name; both
  are started from Python as shown above.
- There is no single-process MapReduce driver; a job always goes through a
  coordinator and at least one worker.
- The replicated key/value service has its state machine and message
  records only (`distlab.kvstate`); there is no consensus layer, replicated
  server or client for it.
- Nothing is written to disk except the MapReduce input and output files;
  the key/value server keeps its data in memory.