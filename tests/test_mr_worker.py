import glob
import os
import shutil
import tempfile
import threading

import pytest

from distlab.mr.coordinator import make_coordinator
from distlab.mr.rpc import ExampleArgs, Task
from distlab.mr.worker import (
    KeyValue,
    call,
    call_example,
    ihash,
    partition,
    read_all_key_values,
    worker,
    write_partitions,
    write_reduce_output,
)


@pytest.fixture
def sockname():
    directory = tempfile.mkdtemp(prefix="mr")
    yield os.path.join(directory, "s")
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_ihash_is_masked_fnv1a():
    assert ihash("") == 0x811C9DC5 & 0x7FFFFFFF
    assert ihash("a") == 0xE40C292C & 0x7FFFFFFF


def test_ihash_is_non_negative_31_bit():
    for key in ["apple", "banana", "ünïcode", "x" * 100]:
        assert 0 <= ihash(key) < 2**31
        assert ihash(key) == ihash(key)


def test_partition_places_each_pair_by_hash():
    pairs = [KeyValue(w, "1") for w in ["the", "quick", "brown", "fox", "the"]]
    buckets = partition(pairs, 4)
    assert len(buckets) == 4
    assert sum(len(b) for b in buckets) == len(pairs)
    for i, bucket in enumerate(buckets):
        for kv in bucket:
            assert ihash(kv.key) % 4 == i
    flat = [kv for bucket in buckets for kv in bucket]
    assert sorted(flat, key=lambda kv: kv.key) == sorted(pairs, key=lambda kv: kv.key)


def test_write_and_read_partitions_round_trip(workdir):
    pairs = [KeyValue("a", "1"), KeyValue("b", "2"), KeyValue("a", "3")]
    task = Task(task_id=5, n_reduce=2)
    buckets = partition(pairs, 2)
    write_partitions(buckets, task)
    names = ["mr-5-0.tmp", "mr-5-1.tmp"]
    assert all((workdir / n).exists() for n in names)
    for name, bucket in zip(names, buckets):
        assert read_all_key_values([name]) == bucket


def test_partition_file_format(workdir):
    write_partitions([[KeyValue("a", "1")]], Task(task_id=0))
    assert read_all_key_values(["mr-0-0.tmp"]) == [KeyValue("a", "1")]
    assert (workdir / "mr-0-0.tmp").read_text(encoding="utf-8") == '{"Key":"a","Value":"1"}\n'


def test_read_skips_missing_files_and_stops_at_bad_data(workdir):
    (workdir / "good").write_text('{"Key":"k","Value":"v"}\nnot json\n{"Key":"x","Value":"y"}\n')
    assert read_all_key_values(["missing", "good"]) == [KeyValue("k", "v")]


def test_write_reduce_output_groups_runs_of_keys(workdir):
    kva = [KeyValue("a", "1"), KeyValue("a", "2"), KeyValue("b", "3")]
    name = write_reduce_output(kva, Task(task_id=2), lambda key, values: ",".join(values))
    assert name == "mr-out-2"
    assert (workdir / name).read_text(encoding="utf-8") == "a 1,2\nb 3\n"


def test_call_without_coordinator_raises(sockname):
    with pytest.raises(ConnectionError):
        call("Coordinator.example", ExampleArgs(1), sockname)


def test_call_reaches_coordinator(sockname):
    coordinator = make_coordinator([], 1, sockname)
    try:
        assert call("Coordinator.example", ExampleArgs(41), sockname).y == 42
        with pytest.raises(RuntimeError):
            call("Coordinator.Missing", ExampleArgs(1), sockname)
    finally:
        coordinator.close()
    assert not os.path.exists(sockname)


def test_call_example_prints_reply(sockname, capsys):
    coordinator = make_coordinator([], 1, sockname)
    try:
        reply = call_example(sockname)
    finally:
        coordinator.close()
    assert reply.y == 100
    assert capsys.readouterr().out == "reply.Y 100\n"


def _mapf(filename, contents):
    return [KeyValue(w, "1") for w in contents.split()]


def _reducef(key, values):
    return str(len(values))


def test_worker_runs_whole_job(workdir, sockname):
    (workdir / "in0.txt").write_text("a b a")
    (workdir / "in1.txt").write_text("b c")
    coordinator = make_coordinator(["in0.txt", "in1.txt"], 3, sockname)
    try:
        thread = threading.Thread(target=worker, args=(_mapf, _reducef, sockname), daemon=True)
        thread.start()
        thread.join(timeout=30)
        assert not thread.is_alive()
        assert coordinator.done()
    finally:
        coordinator.close()
    outputs = sorted(glob.glob("mr-out-*"))
    assert len(outputs) == 3
    lines = []
    for name in outputs:
        lines.extend((workdir / name).read_text(encoding="utf-8").splitlines())
    assert sorted(lines) == ["a 2", "b 2", "c 1"]