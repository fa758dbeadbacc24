import asyncio
import logging
from datetime import datetime

import aiofiles
import aiofiles.os
from fastapi import APIRouter, HTTPException, Depends

from ..dependencies import get_job_log_manager
from ..services.copy.job_log import JobLogManager

router = APIRouter(prefix="/api", tags=["logfile"])


@router.get("/job-logs")
async def list_job_logs(job_log: JobLogManager = Depends(get_job_log_manager)):
    """List per-job transfer logs, newest first"""
    logging.info("Job log list requested", extra={"operation": "api_list_job_logs"})

    try:
        log_files = await asyncio.wait_for(asyncio.to_thread(job_log.list_log_files), timeout=3.0)
    except asyncio.TimeoutError:
        logging.warning("Job log listing timed out")
        return {"success": False, "message": "Log directory scan timed out", "log_files": []}

    for entry in log_files:
        entry["size_mb"] = round(entry["size_bytes"] / (1024 * 1024), 2)

    return {
        "success": True,
        "message": f"Found {len(log_files)} log files",
        "log_directory": str(job_log.directory),
        "log_files": log_files,
    }


@router.get("/job-logs/{filename}")
async def get_job_log_content(filename: str, job_log: JobLogManager = Depends(get_job_log_manager)):
    """Content of one job log. A running job's log is returned as written so far."""
    try:
        log_file_path = job_log.resolve(filename)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Log file not found")

    try:
        async with aiofiles.open(log_file_path, "r", encoding="utf-8", errors="replace") as f:
            content = await f.read()
        stat = await aiofiles.os.stat(log_file_path)
    except OSError as e:
        logging.error(f"Error reading job log {filename}: {e}")
        raise HTTPException(status_code=500, detail=f"Error reading log file: {str(e)}")

    return {
        "success": True,
        "filename": filename,
        "content": content,
        "size_bytes": stat.st_size,
        "modified_time": datetime.fromtimestamp(stat.st_mtime).isoformat(),
        "lines": content.count("\n") + 1 if content else 0,
    }
