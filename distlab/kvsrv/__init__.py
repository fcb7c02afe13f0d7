"""A single-server key/value service with at-most-once Put and Append, its clerk and a test cluster."""

__all__ = ["server", "client", "cluster"]