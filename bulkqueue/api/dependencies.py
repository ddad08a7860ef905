"""
FastAPI dependencies resolving the components attached to the application.
"""

from typing import Annotated

from fastapi import Depends, Request

from bulkqueue.queue.manager import QueueManager
from bulkqueue.reaper.main import Reaper


def get_queue_manager(request: Request) -> QueueManager:
    return request.app.state.queue_manager


def get_reaper(request: Request) -> Reaper:
    return request.app.state.reaper


Manager = Annotated[QueueManager, Depends(get_queue_manager)]
ReaperDep = Annotated[Reaper, Depends(get_reaper)]
