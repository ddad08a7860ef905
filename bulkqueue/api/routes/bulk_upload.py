"""
Bulk upload routes.

Each route accepts either a bare JSON array of records or an object holding
the array under the entity key, and answers 202 with a job handle.
"""

import logging
import math
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request, status

from bulkqueue.api.auth import CurrentUser
from bulkqueue.api.dependencies import Manager
from bulkqueue.constants import API_V1_PREFIX, QUEUE_ENTITIES, RECORDS_PER_MINUTE
from bulkqueue.types.api import EnqueueResponse, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/bulk-upload", tags=["Bulk upload"])

# URL segment -> queue
_QUEUES_BY_ENTITY = {entity: queue for queue, (entity, _, _) in QUEUE_ENTITIES.items()}


@router.post(
    "/{entity}",
    response_model=EnqueueResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        400: {"model": ErrorResponse, "description": "Empty or malformed record array"},
        500: {"model": ErrorResponse, "description": "Queue store unavailable"},
    },
    summary="Queue a bulk upload",
    description=(
        "Queue a batch of mechanics, service-providers or policies for background "
        "processing. Poll the returned statusCheckUrl for completion."
    ),
)
async def bulk_upload(
    entity: str,
    request: Request,
    current_user: CurrentUser,
    manager: Manager,
    body: Any = Body(...),
) -> EnqueueResponse:
    """
    Queue a bulk upload job.

    Args:
        entity: Upload entity (mechanics, service-providers or policies).
        request: The HTTP request.
        current_user: Authenticated user context.
        manager: The queue manager.
        body: Array of records, or an object holding it under the entity key.

    Returns:
        EnqueueResponse with the job handle.
    """
    queue = _QUEUES_BY_ENTITY.get(entity)
    if queue is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown upload entity")

    _, body_key, label = QUEUE_ENTITIES[queue]
    records = body if isinstance(body, list) else body.get(body_key) if isinstance(body, dict) else None
    total = len(records) if isinstance(records, list) else 0

    handle = await manager.enqueue(
        queue,
        records,
        current_user.organization_id,
        request_metadata={
            "userId": current_user.user_id,
            "email": current_user.email,
            "adminRole": current_user.role,
            "userAgent": request.headers.get("user-agent"),
            "ip": request.client.host if request.client else None,
            "totalRecords": total,
        },
    )

    return EnqueueResponse(
        job_id=handle.id,
        queue_name=handle.queue_name,
        total_records=total,
        estimated_processing_time=f"{math.ceil(total / RECORDS_PER_MINUTE[queue])} minutes",
        status_check_url=f"{API_V1_PREFIX}/jobs/{handle.queue_name.value}/{handle.id}/status",
        message=f"{label} bulk upload job queued successfully",
    )
