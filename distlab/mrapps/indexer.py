"""Inverted index: lists the documents in which every word appears."""

import itertools

from distlab.mr.worker import KeyValue

__all__ = ["map_fn", "reduce_fn"]


def _words(text):
    return [
        "".join(run)
        for is_letter, run in itertools.groupby(text, str.isalpha)
        if is_letter
    ]


def map_fn(document, value):
    """Emit (word, document) once for every distinct word of the document."""
    return [KeyValue(word, document) for word in dict.fromkeys(_words(value))]


def reduce_fn(key, values):
    """Number of documents and their sorted, comma-separated names."""
    return f"{len(values)} {','.join(sorted(values))}"