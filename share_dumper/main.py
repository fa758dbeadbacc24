import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request

from .api import connection, jobs, logfiles, uiactions, websockets
from .dependencies import (
    get_event_bus,
    get_job_log_manager,
    get_job_queue_service,
    get_mount_coordinator,
    get_presentation_event_handlers,
    get_settings,
    get_websocket_manager,
)
from .domains.presentation.registration import register_presentation_domain
from .logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    settings = get_settings()
    setup_logging(settings)

    config_info = settings.config_file_info
    logging.info(f"Configuration loaded from: {config_info['active_config_file']}")
    logging.info(f"Running on hostname: {config_info['hostname']}")
    if len(config_info["all_available_configs"]) > 1:
        logging.info(f"Available config files: {', '.join(config_info['all_available_configs'])}")

    logging.info("Share Dumper starting up...")
    logging.info(f"Default server: {settings.display_name_for(settings.default_server)}")
    logging.info(f"Job logs: {settings.job_log_path}")

    job_log = get_job_log_manager()
    try:
        job_log.ensure_directory()
        removed = await job_log.cleanup_old_logs_async()
        if removed > 0:
            logging.info(f"Startup cleanup: removed {removed} old job logs")
    except OSError as e:
        logging.warning(f"Job log cleanup failed (non-critical): {e}")

    websocket_manager = get_websocket_manager()
    websocket_manager.start_sender_task()
    await register_presentation_domain(get_event_bus(), get_presentation_event_handlers())

    job_queue = get_job_queue_service()

    # Pick up shares still mounted from a previous session
    await get_mount_coordinator().refresh_mounted_shares()

    yield

    logging.info("Share Dumper shutting down...")
    await job_queue.shutdown()
    await websocket_manager.stop_sender_task()
    logging.info("All background tasks stopped")


app = FastAPI(
    title="Share Dumper",
    description="Mounts SMB shares and copies folders off them with rsync, one job at a time",
    version="0.1.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logging.debug(
        f"Incoming request: {request.method} {request.url.path}",
        extra={
            "operation": "http_request",
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else "unknown",
        },
    )

    response = await call_next(request)

    logging.debug(
        f"Response: {response.status_code}",
        extra={
            "operation": "http_response",
            "status_code": response.status_code,
            "path": request.url.path,
        },
    )
    return response


app.include_router(uiactions.router)
app.include_router(websockets.router)
app.include_router(jobs.router)
app.include_router(connection.router)
app.include_router(logfiles.router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Share Dumper is running"}


@app.get("/health")
async def health():
    """Detailed health check."""
    job_queue = get_job_queue_service()
    running = job_queue.running_job
    return {
        "status": "healthy",
        "service": "share-dumper",
        "running_job": running.id if running else None,
        "websocket_clients": get_websocket_manager().connection_count,
    }


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "share_dumper.main:app", host=settings.host, port=settings.port, reload=False, log_level="info"
    )
