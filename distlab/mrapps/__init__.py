"""MapReduce applications, each providing map_fn and reduce_fn."""

__all__ = [
    "wc",
    "indexer",
    "crash",
    "nocrash",
    "early_exit",
    "jobcount",
    "mtiming",
    "rtiming",
]