import logging

from fastapi import APIRouter, Depends, HTTPException, status

from share_dumper.core.exceptions import JobNotFoundError
from share_dumper.dependencies import get_job_queue_service
from share_dumper.domains.presentation.event_handlers import serialize_job
from share_dumper.models import JobSubmission, ReorderRequest
from share_dumper.services.job_queue import JobQueueService

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("")
async def list_jobs(job_queue: JobQueueService = Depends(get_job_queue_service)):
    """All jobs in queue order."""
    return {
        "jobs": [serialize_job(job) for job in job_queue.get_jobs()],
        "statistics": job_queue.get_statistics(),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_job(submission: JobSubmission, job_queue: JobQueueService = Depends(get_job_queue_service)):
    logging.info(
        f"Job submission: {len(submission.sources)} source(s) from {submission.server_host} -> {submission.destination}",
        extra={"operation": "api_submit_job"},
    )
    job = job_queue.submit(submission)
    return serialize_job(job_queue.get_job(job.id))


@router.get("/statistics")
async def job_statistics(job_queue: JobQueueService = Depends(get_job_queue_service)):
    return job_queue.get_statistics()


@router.post("/reorder")
async def reorder_jobs(request: ReorderRequest, job_queue: JobQueueService = Depends(get_job_queue_service)):
    try:
        job_queue.reorder(request.from_positions, request.to_position)
    except IndexError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return {"success": True, "jobs": [serialize_job(job) for job in job_queue.get_jobs()]}


@router.post("/prune")
async def prune_jobs(job_queue: JobQueueService = Depends(get_job_queue_service)):
    removed = job_queue.prune_finished()
    return {"success": True, "removed": removed}


@router.get("/{job_id}")
async def get_job(job_id: str, job_queue: JobQueueService = Depends(get_job_queue_service)):
    try:
        return serialize_job(job_queue.get_job(job_id))
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str, job_queue: JobQueueService = Depends(get_job_queue_service)):
    """Cancel a pending or running job. Returns once a running job's process has exited."""
    try:
        cancelled = await job_queue.cancel(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if not cancelled:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Job has already finished")
    return {"success": True, "job": serialize_job(job_queue.get_job(job_id))}


@router.post("/{job_id}/retry")
async def retry_job(job_id: str, job_queue: JobQueueService = Depends(get_job_queue_service)):
    try:
        retried = job_queue.retry(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if not retried:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Only failed jobs can be retried")
    return {"success": True, "job": serialize_job(job_queue.get_job(job_id))}
