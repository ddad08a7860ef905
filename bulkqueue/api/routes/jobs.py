"""
Job status and retention routes.
"""

import logging

from fastapi import APIRouter

from bulkqueue.api.auth import AdminUser, CurrentUser
from bulkqueue.api.dependencies import Manager, ReaperDep
from bulkqueue.constants import API_V1_PREFIX
from bulkqueue.types.api import CleanupResponse, ErrorResponse, TTLConfigResponse
from bulkqueue.types.job import JobView, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])


@router.get(
    "/ttl/config",
    response_model=TTLConfigResponse,
    response_model_by_alias=True,
    summary="Retention configuration",
    description="Get the job retention windows and cleanup schedule.",
)
async def get_ttl_config(current_user: CurrentUser, manager: Manager) -> TTLConfigResponse:
    return manager.policy.describe()


@router.post(
    "/cleanup",
    response_model=CleanupResponse,
    response_model_by_alias=True,
    summary="Clean up expired jobs",
    description="Run the expired-job sweep now. Requires an admin role.",
)
async def cleanup_expired_jobs(
    current_user: AdminUser,
    manager: Manager,
    reaper: ReaperDep,
) -> CleanupResponse:
    """
    Trigger a manual sweep.

    Args:
        current_user: Authenticated admin.
        manager: The queue manager.
        reaper: The TTL reaper.

    Returns:
        CleanupResponse with the number of records removed.
    """
    logger.info(
        "Manual cleanup triggered",
        extra={
            "user_id": current_user.user_id,
            "organization_id": current_user.organization_id,
        },
    )

    cleaned = await reaper.run_once()

    return CleanupResponse(
        cleaned_jobs=cleaned,
        triggered_by=current_user.user_id,
        triggered_at=utcnow(),
        ttl_config=manager.policy.summary(),
    )


@router.get(
    "/{queue_name}/{job_id}/status",
    response_model=JobView,
    response_model_by_alias=True,
    responses={
        400: {"model": ErrorResponse, "description": "Unknown queue"},
        403: {"model": ErrorResponse, "description": "Job belongs to another organization"},
        404: {"model": ErrorResponse, "description": "Job not found or cleaned up"},
    },
    summary="Get job status",
    description="Get the state, progress and retention of a job owned by the caller's organization.",
)
async def get_job_status(
    queue_name: str,
    job_id: str,
    current_user: CurrentUser,
    manager: Manager,
) -> JobView:
    """
    Get a job's status.

    Raises:
        InvalidQueue: 400 if the queue is unknown.
        JobAccessDenied: 403 if the job belongs to another organization.
        JobNotFound: 404 if the job does not exist or was cleaned up.
    """
    return await manager.get_status(queue_name, job_id, current_user.organization_id)
