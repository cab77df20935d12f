from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from silencecut.app.schemas.jobs import JobDetail, JobSubmitRequest
from silencecut.domain.errors import (
    InsufficientCreditsError,
    InvalidJobStateError,
    JobNotFoundError,
    QueueConnectionError,
)
from silencecut.domain.services.job_service import JobService

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def get_job_service(request: Request) -> JobService:
    service = getattr(request.app.state, "job_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return service


@router.post("", response_model=JobDetail, status_code=202)
async def submit_job(body: JobSubmitRequest, service: JobService = Depends(get_job_service)):
    """
    Register an uploaded file as a job, charge one credit and queue it.
    """
    try:
        job = await service.submit_job(
            owner_id=body.owner_id,
            input_key=body.input_key,
            original_filename=body.original_filename,
            file_size=body.file_size,
            job_id=body.job_id,
        )
    except InsufficientCreditsError as e:
        raise HTTPException(status_code=402, detail="Insufficient credits. Please purchase more credits to continue.") from e
    except InvalidJobStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=413, detail=str(e)) from e
    except QueueConnectionError as e:
        raise HTTPException(status_code=503, detail="Job saved but could not be queued; retry it later") from e

    return JobDetail.from_job(job)


@router.get("", response_model=List[JobDetail])
async def list_jobs(
    owner_id: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: JobService = Depends(get_job_service),
):
    jobs = await service.list_jobs(owner_id, limit=limit, offset=offset)
    return [JobDetail.from_job(j) for j in jobs]


@router.get("/{job_id}", response_model=JobDetail)
async def get_job_status(
    job_id: str,
    owner_id: Optional[str] = None,
    service: JobService = Depends(get_job_service),
):
    try:
        job = await service.get_job(job_id, owner_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail="Job not found") from e

    return JobDetail.from_job(job, download_url=service.download_url_for(job))


@router.post("/{job_id}/retry", response_model=JobDetail, status_code=202)
async def retry_job(
    job_id: str,
    owner_id: Optional[str] = None,
    service: JobService = Depends(get_job_service),
):
    """
    Re-queue a failed job, charging a fresh credit. A queued job whose message
    was lost is re-enqueued without a charge.
    """
    try:
        job = await service.retry_job(job_id, owner_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail="Job not found") from e
    except InvalidJobStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except InsufficientCreditsError as e:
        raise HTTPException(status_code=402, detail="Insufficient credits. Please purchase more credits to retry.") from e
    except QueueConnectionError as e:
        raise HTTPException(status_code=503, detail="Job reset but could not be queued; retry later") from e

    return JobDetail.from_job(job)
