"""
Worker module.
Contains the worker pool and the job handlers.
"""

from bulkqueue.worker.main import WorkerPool, run

__all__ = ["WorkerPool", "run"]
