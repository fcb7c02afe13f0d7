"""A pseudo-application that sometimes crashes and sometimes stalls."""

import os
import secrets
import time

from distlab.mr.worker import KeyValue

__all__ = ["map_fn", "maybe_crash", "reduce_fn"]


def maybe_crash():
    """Exit the process about a third of the time, stall up to 10 s another third."""
    roll = secrets.randbelow(1000)
    if roll < 330:
        os._exit(1)
    elif roll < 660:
        time.sleep(secrets.randbelow(10 * 1000) / 1000)


def map_fn(filename, contents):
    maybe_crash()
    return [
        KeyValue("a", filename),
        KeyValue("b", str(len(filename.encode("utf-8")))),
        KeyValue("c", str(len(contents.encode("utf-8")))),
        KeyValue("d", "xyzzy"),
    ]


def reduce_fn(key, values):
    maybe_crash()
    return " ".join(sorted(values))