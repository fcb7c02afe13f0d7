"""Counts how many times map tasks run, to detect tasks assigned twice."""

import itertools
import os
import random
import time
from pathlib import Path

from distlab.mr.worker import KeyValue

__all__ = ["map_fn", "reduce_fn"]

_PREFIX = "mr-worker-jobcount"
_invocations = itertools.count()


def map_fn(filename, contents):
    """Leave a marker file for this invocation, then stall for 2 to 5 seconds."""
    Path(f"{_PREFIX}-{os.getpid()}-{next(_invocations)}").write_bytes(b"x")
    time.sleep((2000 + random.randrange(3000)) / 1000)
    return [KeyValue("a", "x")]


def reduce_fn(key, values):
    """Number of map invocations recorded in the current directory."""
    return str(sum(1 for name in os.listdir(".") if name.startswith(_PREFIX)))