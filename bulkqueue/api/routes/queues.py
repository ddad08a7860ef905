"""
Queue statistics routes.
"""

from fastapi import APIRouter

from bulkqueue.api.auth import CurrentUser
from bulkqueue.api.dependencies import Manager
from bulkqueue.constants import API_V1_PREFIX
from bulkqueue.types.api import AllQueueStatsResponse, ErrorResponse, QueueStatsResponse
from bulkqueue.types.job import utcnow

router = APIRouter(prefix=f"{API_V1_PREFIX}/queues", tags=["Queues"])


@router.get(
    "/stats",
    response_model=AllQueueStatsResponse,
    response_model_by_alias=True,
    summary="Statistics of all queues",
    description="Job counts per state for every queue. A failing queue reports an error entry.",
)
async def get_all_queue_stats(current_user: CurrentUser, manager: Manager) -> AllQueueStatsResponse:
    return AllQueueStatsResponse(queues=await manager.get_all_queue_stats(), timestamp=utcnow())


@router.get(
    "/{queue_name}/stats",
    response_model=QueueStatsResponse,
    response_model_by_alias=True,
    responses={400: {"model": ErrorResponse, "description": "Unknown queue"}},
    summary="Statistics of one queue",
    description="Job counts per state for a queue.",
)
async def get_queue_stats(
    queue_name: str,
    current_user: CurrentUser,
    manager: Manager,
) -> QueueStatsResponse:
    queue = manager.resolve_queue(queue_name)
    return QueueStatsResponse(
        queue_name=queue,
        statistics=await manager.get_queue_stats(queue),
        timestamp=utcnow(),
    )
