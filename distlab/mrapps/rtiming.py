"""Measures reduce parallelism, to check that reduce tasks run concurrently."""

import os
import re
import time
from pathlib import Path

from distlab.mr.worker import KeyValue

__all__ = ["map_fn", "nparallel", "reduce_fn"]


def _alive(pid):
    try:
        os.kill(pid, 0)
    except (OSError, ValueError, OverflowError):
        return False
    return True


def nparallel(phase):
    """Count the workers running ``phase`` at the same time as this process.

    Each worker leaves a marker file named after its process id in the current
    directory for one second; markers of live processes are counted.
    """
    marker = Path(f"mr-worker-{phase}-{os.getpid()}")
    marker.write_bytes(b"x")

    pattern = re.compile(rf"mr-worker-{re.escape(phase)}-([+-]?\d+)")
    running = 0
    for entry in os.scandir("."):
        match = pattern.match(entry.name)
        if match and _alive(int(match.group(1))):
            running += 1

    time.sleep(1)
    marker.unlink()
    return running


def map_fn(filename, contents):
    """Emit ten fixed keys, so that there is work for every reduce task."""
    return [KeyValue(key, "1") for key in "abcdefghij"]


def reduce_fn(key, values):
    """Number of reduce workers running at the same time as this one."""
    return str(nparallel("reduce"))