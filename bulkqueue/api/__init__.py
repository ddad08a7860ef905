"""
API module.
Contains FastAPI application, routes, and dependencies.
"""

from bulkqueue.api.main import create_app, run

__all__ = ["create_app", "run"]
