"""Records map timings and parallelism, to check that map tasks run concurrently."""

import os
import re
import time
from pathlib import Path

from distlab.mr.worker import KeyValue

__all__ = ["map_fn", "nparallel", "reduce_fn"]

_PID = re.compile(r"[+-]?\d+")


def _alive(pid):
    try:
        os.kill(pid, 0)
    except (OSError, OverflowError):
        return False
    return True


def nparallel(phase):
    """Number of workers currently in the given phase, this one included.

    Each worker announces itself with a marker file in the current directory;
    markers of processes that are no longer alive are not counted.
    """
    prefix = f"mr-worker-{phase}-"
    mine = Path(f"{prefix}{os.getpid()}")
    mine.write_bytes(b"x")

    running = 0
    for name in os.listdir("."):
        if not name.startswith(prefix):
            continue
        match = _PID.match(name, len(prefix))
        if match is not None and _alive(int(match.group())):
            running += 1

    time.sleep(1)
    mine.unlink()
    return running


def map_fn(filename, contents):
    started = time.time()
    pid = os.getpid()
    n = nparallel("map")
    return [
        KeyValue(f"times-{pid}", f"{started:.1f}"),
        KeyValue(f"parallel-{pid}", str(n)),
    ]


def reduce_fn(key, values):
    return " ".join(sorted(values))