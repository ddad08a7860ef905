"""
Queue module.
Contains the queue store, manager and retention policy.
"""

from bulkqueue.queue.manager import QueueManager
from bulkqueue.queue.store import MemoryQueueStore, QueueStore, SqlQueueStore, build_store
from bulkqueue.queue.ttl import TTLPolicy

__all__ = [
    "QueueStore",
    "MemoryQueueStore",
    "SqlQueueStore",
    "build_store",
    "QueueManager",
    "TTLPolicy",
]
