"""
Job handlers registry and implementations.

Each queue has exactly one handler. Handlers may be executed more than once
for the same job (retries), so the records service must tolerate repeated
chunks.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from bulkqueue.config import get_settings
from bulkqueue.constants import QUEUE_ENTITIES, QueueName
from bulkqueue.types.job import JobContext, JobResult, utcnow

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]

# Handler registry
_handlers: dict[QueueName, JobHandler] = {}


def register_handler(queue_name: QueueName) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register the handler of a queue.

    Args:
        queue_name: The queue this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler(QueueName.BULK_UPLOAD_POLICIES)
        async def handle_policies(context: JobContext) -> JobResult:
            ...
    """

    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[queue_name] = handler
        logger.debug("Registered handler", extra={"queue": queue_name.value})
        return handler

    return decorator


def get_handler(queue_name: QueueName) -> JobHandler | None:
    """
    Get the handler for a queue.

    Args:
        queue_name: The queue.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(queue_name)


def list_handlers() -> list[QueueName]:
    """List all queues with a registered handler."""
    return list(_handlers.keys())


def _chunks(records: list[Any], size: int) -> list[list[Any]]:
    return [records[i : i + size] for i in range(0, len(records), size)]


async def forward_records(
    context: JobContext,
    base_url: str | None = None,
    chunk_size: int | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> JobResult:
    """
    Upload the job's records to the records service in chunks.

    Each chunk is POSTed to ``{base_url}/{entity}/bulk``. Progress moves
    from 10 to 90 as chunks are accepted; the final 100 is set when the
    job completes.

    Args:
        context: The job context.
        base_url: Records service URL. Defaults to RECORDS_SERVICE_URL.
        chunk_size: Records per request. Defaults to WORKER_CHUNK_SIZE.
        transport: Optional httpx transport (used by tests).

    Returns:
        JobResult with the upload summary, or a failure.
    """
    settings = get_settings()
    base_url = base_url or settings.records_service_url
    chunk_size = chunk_size or settings.worker_chunk_size
    entity, body_key, label = QUEUE_ENTITIES[context.queue_name]
    user_id = context.request_metadata.get("userId")

    if not base_url:
        return JobResult(success=False, error="Records service URL is not configured")

    await context.report_progress(10)

    chunks = _chunks(context.payload, chunk_size)
    uploaded = 0

    logger.info(
        "Uploading records",
        extra={
            "job_id": context.job_id,
            "queue": context.queue_name.value,
            "records": len(context.payload),
            "chunks": len(chunks),
            "attempt": context.attempt,
        },
    )

    try:
        async with httpx.AsyncClient(
            base_url=base_url,
            timeout=settings.records_service_timeout_seconds,
            transport=transport,
        ) as client:
            for index, chunk in enumerate(chunks, start=1):
                response = await client.post(
                    f"/{entity}/bulk",
                    json={
                        "organizationId": context.organization_id,
                        "userId": user_id,
                        body_key: chunk,
                    },
                )
                if not response.is_success:
                    return JobResult(
                        success=False,
                        error=f"Records service rejected chunk {index}: HTTP {response.status_code}",
                    )
                uploaded += len(chunk)
                await context.report_progress(10 + (80 * index) // len(chunks))
    except httpx.HTTPError as e:
        return JobResult(success=False, error=f"Records service request failed: {e}")

    await context.report_progress(90)

    return JobResult(
        success=True,
        output={
            "message": f"{label} uploaded successfully",
            "uploaded": uploaded,
            "organizationId": context.organization_id,
            "userId": user_id,
            "processedAt": utcnow().isoformat(),
        },
    )


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler(QueueName.BULK_UPLOAD_MECHANICS)
async def handle_mechanics(context: JobContext) -> JobResult:
    """Upload a batch of mechanics."""
    return await forward_records(context)


@register_handler(QueueName.BULK_UPLOAD_SERVICE_PROVIDERS)
async def handle_service_providers(context: JobContext) -> JobResult:
    """Upload a batch of service providers."""
    return await forward_records(context)


@register_handler(QueueName.BULK_UPLOAD_POLICIES)
async def handle_policies(context: JobContext) -> JobResult:
    """Upload a batch of insurance policies."""
    return await forward_records(context)


async def execute_job(
    context: JobContext,
    handler: JobHandler | None = None,
    timeout: float | None = None,
) -> JobResult:
    """
    Execute one attempt of a job.

    Exceptions, timeouts and return values other than a JobResult are
    turned into a failed JobResult; nothing propagates to the caller.

    Args:
        context: The job context.
        handler: Handler to run. Defaults to the queue's registered handler.
        timeout: Attempt deadline in seconds. None disables it.

    Returns:
        JobResult from the handler.
    """
    handler = handler or get_handler(context.queue_name)

    if handler is None:
        logger.error(
            "No handler for queue",
            extra={"job_id": context.job_id, "queue": context.queue_name.value},
        )
        return JobResult(
            success=False,
            error=f"No handler registered for queue: {context.queue_name.value}",
        )

    try:
        result = await asyncio.wait_for(handler(context), timeout=timeout)
    except TimeoutError:
        logger.warning(
            "Handler timed out",
            extra={"job_id": context.job_id, "timeout": timeout},
        )
        return JobResult(success=False, error=f"Job timed out after {timeout:g}s")
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": context.job_id, "error": str(e)},
        )
        return JobResult(success=False, error=str(e) or type(e).__name__)

    if not isinstance(result, JobResult):
        logger.error(
            "Handler returned an invalid result",
            extra={"job_id": context.job_id, "result_type": type(result).__name__},
        )
        return JobResult(
            success=False,
            error=f"Handler returned {type(result).__name__} instead of JobResult",
        )
    return result
