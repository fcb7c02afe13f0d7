"""Building blocks for distributed systems: simulated RPC, key/value services and MapReduce."""

__version__ = "0.1.0"