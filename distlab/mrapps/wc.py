"""Word count: counts how often every word occurs in the input."""

import itertools

from distlab.mr.worker import KeyValue

__all__ = ["map_fn", "reduce_fn"]


def _words(text):
    """Maximal runs of letters in a text."""
    return [
        "".join(run)
        for is_letter, run in itertools.groupby(text, str.isalpha)
        if is_letter
    ]


def map_fn(filename, contents):
    """Emit (word, "1") for every word in the contents; the file name is ignored."""
    return [KeyValue(word, "1") for word in _words(contents)]


def reduce_fn(key, values):
    """Number of occurrences of a word."""
    return str(len(values))