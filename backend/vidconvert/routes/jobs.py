"""Conversion job API endpoints."""

import logging

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, Query
from vidconvert.dependencies import get_orchestrator
from vidconvert.errors import ValidationError
from vidconvert.models.job import JobStatus
from vidconvert.models.schemas import (
    JobCreate,
    JobResponse,
    JobListResponse,
    JobCreateResponse,
)
from vidconvert.services.job_orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=JobCreateResponse)
async def create_job(
    job_data: JobCreate, orchestrator: JobOrchestrator = Depends(get_orchestrator)
):
    """
    Submit a conversion job.

    Args:
        job_data: Source key, owner, target format and resolution
        orchestrator: Job orchestrator

    Returns:
        Created job ID
    """
    try:
        job_id = await orchestrator.submit(
            owner_id=job_data.owner_id,
            source_key=job_data.source_key,
            target_format=job_data.target_format,
            target_resolution=job_data.target_resolution,
        )
        return JobCreateResponse(job_id=job_id)

    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating job: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("", response_model=JobListResponse)
async def list_jobs(
    owner_id: Optional[str] = Query(None, alias="ownerId", description="Filter by owner"),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    List jobs, newest first.

    Args:
        owner_id: Optional owner filter
        orchestrator: Job orchestrator

    Returns:
        List of jobs and total count
    """
    try:
        jobs = await orchestrator.list_jobs(owner_id)
        return JobListResponse(
            jobs=[JobResponse.model_validate(job) for job in jobs],
            total=len(jobs),
        )

    except Exception as e:
        logger.error(f"Error listing jobs: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    """
    Get job status by ID.

    Args:
        job_id: Job ID
        orchestrator: Job orchestrator

    Returns:
        Job snapshot
    """
    try:
        job = await orchestrator.status(job_id)

        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        return JobResponse.model_validate(job)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting job {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/{job_id}")
async def cancel_job(job_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    """
    Cancel a queued or running job. It ends as Failed.
    """
    try:
        job = await orchestrator.status(job_id)

        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        if JobStatus(job.status).is_terminal:
            raise HTTPException(
                status_code=409, detail=f"Job already {job.status}"
            )

        if not await orchestrator.cancel(job_id):
            raise HTTPException(status_code=409, detail="Job can no longer be cancelled")

        logger.info(f"Cancelled job {job_id}")
        return {"success": True, "message": f"Job {job_id} cancellation requested"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error cancelling job {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
