"""
Job management routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.auth import require_api_key
from jobqueue.constants import API_V1_PREFIX
from jobqueue.db import get_async_session
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.errors import SerializationError
from jobqueue.payload import ADHOC_JOB_TYPE, PayloadObject, PayloadRegistry, default_registry
from jobqueue.producer import enqueue
from jobqueue.types.api import (
    CreateJobRequest,
    CreateJobResponse,
    JobFailureResponse,
    JobListResponse,
    JobResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix=f"{API_V1_PREFIX}/jobs",
    tags=["Jobs"],
    dependencies=[Depends(require_api_key)],
)


def get_registry(request: Request) -> PayloadRegistry:
    """
    Registry used to validate and encode submitted handlers.

    The lifespan stores the registry loaded from the configured handler
    modules on the app state.
    """
    return getattr(request.app.state, "registry", default_registry)


def _job_to_response(
    job: Job,
    registry: PayloadRegistry,
    last_error: str | None = None,
) -> JobResponse:
    """Convert a Job model to a JobResponse."""
    return JobResponse(
        id=job.id,
        name=registry.describe(job),
        priority=job.priority,
        attempts=job.attempts,
        handler=job.handler,
        run_at=job.run_at,
        locked_at=job.locked_at,
        locked_by=job.locked_by,
        created_at=job.created_at,
        updated_at=job.updated_at,
        last_error=last_error,
    )


@router.post(
    "",
    response_model=CreateJobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue a job",
    description="Enqueue a registered handler with its arguments.",
)
async def create_job(
    request: CreateJobRequest,
    session: AsyncSession = Depends(get_async_session),
    registry: PayloadRegistry = Depends(get_registry),
) -> CreateJobResponse:
    """
    Enqueue a registered direct handler.

    Ad-hoc instructions and deferred method calls are not accepted here;
    they carry code or object references that only trusted callers may
    submit.

    Args:
        request: Handler discriminator, arguments and scheduling.
        session: Database session.
        registry: Payload registry.

    Returns:
        CreateJobResponse with the new job id.

    Raises:
        HTTPException: 422 for unknown or invalid handlers, 413 when the
            encoded handler is too large.
    """
    if request.job_type == ADHOC_JOB_TYPE:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Ad-hoc instructions can only be enqueued from the command line",
        )

    handler_cls = registry.get_handler_type(request.job_type)
    if handler_cls is None or not issubclass(handler_cls, PayloadObject):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown job type: {request.job_type}",
        )

    try:
        handler = handler_cls.model_validate(request.data)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid arguments for {request.job_type}: {e.error_count()} errors",
        )

    try:
        job_id = await enqueue(
            session,
            handler,
            priority=request.priority,
            run_at=request.run_at,
            registry=registry,
        )
    except SerializationError as e:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(e),
        )

    job = await JobRepository(session).get_job(job_id)
    await session.commit()

    return CreateJobResponse(
        id=job.id,
        name=handler.display_name,
        priority=job.priority,
        run_at=job.run_at,
    )


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List queued jobs in the order workers would pick them.",
)
async def list_jobs(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    locked: bool | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
    registry: PayloadRegistry = Depends(get_registry),
) -> JobListResponse:
    """
    List jobs.

    Args:
        page: Page number (1-indexed).
        page_size: Number of items per page.
        locked: Only leased (True) or only unleased (False) jobs.
        session: Database session.
        registry: Payload registry used to name jobs.

    Returns:
        JobListResponse with paginated jobs.
    """
    repo = JobRepository(session)
    offset = (page - 1) * page_size

    jobs, total = await repo.list_jobs(limit=page_size, offset=offset, locked=locked)

    return JobListResponse(
        jobs=[_job_to_response(job, registry) for job in jobs],
        total=total,
        page=page,
        page_size=page_size,
        has_next=(page * page_size) < total,
    )


@router.get(
    "/stats/summary",
    summary="Get job statistics",
    description="Counts of queued, leased, due and future jobs.",
)
async def get_job_stats(
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    repo = JobRepository(session)
    return {"stats": await repo.get_job_stats()}


@router.delete(
    "",
    summary="Clear the queue",
    description="Delete every job, optionally with the failure history.",
)
async def clear_jobs(
    failures: bool = Query(default=False),
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    repo = JobRepository(session)
    deleted = await repo.clear_jobs()
    failures_deleted = await repo.clear_failures() if failures else 0
    await session.commit()

    logger.warning(
        "Queue cleared through the API",
        extra={"deleted": deleted, "failures_deleted": failures_deleted},
    )
    return {"deleted": deleted, "failures_deleted": failures_deleted}


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get a queued job with its most recent error.",
)
async def get_job(
    job_id: int,
    session: AsyncSession = Depends(get_async_session),
    registry: PayloadRegistry = Depends(get_registry),
) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If the job is not queued (never existed, completed,
            or removed after exhausting its attempts).
    """
    repo = JobRepository(session)
    job = await repo.get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    failure = await repo.last_failure(job_id)
    return _job_to_response(job, registry, failure.message if failure else None)


@router.get(
    "/{job_id}/failures",
    response_model=list[JobFailureResponse],
    summary="Get failure history",
    description="Every recorded failure of a job, oldest first. Kept after the job is gone.",
)
async def list_job_failures(
    job_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> list[JobFailureResponse]:
    failures = await JobRepository(session).list_failures(job_id)
    return [
        JobFailureResponse(
            id=f.id,
            job_id=f.job_id,
            message=f.message,
            trace=f.trace,
            created_at=f.created_at,
        )
        for f in failures
    ]
