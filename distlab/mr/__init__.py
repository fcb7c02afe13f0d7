"""MapReduce coordinator, worker and the messages between them."""

__all__ = ["rpc", "coordinator", "worker"]