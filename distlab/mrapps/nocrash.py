"""Same as the crashing application, but it never crashes."""

import secrets

from distlab.mr.worker import KeyValue

__all__ = ["map_fn", "maybe_crash", "reduce_fn"]


def maybe_crash():
    """Draw a random number like the crashing variant, but never act on it."""
    secrets.randbelow(1000)


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