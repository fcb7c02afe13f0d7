"""Counts input files; some reduce calls stall to catch workers that quit early."""

import time

from distlab.mr.worker import KeyValue

__all__ = ["map_fn", "reduce_fn"]


def map_fn(filename, contents):
    """Emit (filename, "1") once per file."""
    return [KeyValue(filename, "1")]


def reduce_fn(key, values):
    """Number of occurrences of a file; slow for some keys."""
    if "sherlock" in key or "tom" in key:
        time.sleep(3)
    return str(len(values))