"""Liveness endpoint polled by the worker's process supervisor."""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel

from download.worker import WORKER_STATE_STOPPED, WorkerStatus
from engine.runtime import get_runtime_info

APP_NAME = "Jukebox Ingestion Worker"

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str
    worker: dict[str, Any]
    runtime: dict[str, Any]


def create_app(status: Optional[WorkerStatus] = None) -> FastAPI:
    app = FastAPI(
        title=APP_NAME,
        description="Health probe for the jukebox media ingestion worker.",
    )
    app.state.worker_status = status or WorkerStatus()

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        snapshot = app.state.worker_status.snapshot()
        state = "stopping" if snapshot["state"] == WORKER_STATE_STOPPED else "ok"
        return HealthResponse(status=state, worker=snapshot, runtime=get_runtime_info())

    return app


def start_health_server(status: WorkerStatus, *, port: int, host: str = "0.0.0.0") -> Optional[uvicorn.Server]:
    """Serve the health app on a daemon thread; port 0 disables it."""
    if not port:
        logger.info("Health endpoint disabled")
        return None
    config = uvicorn.Config(create_app(status), host=host, port=port, log_config=None, access_log=False)
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, name="health-server", daemon=True)
    thread.start()
    logger.info("Health endpoint listening on %s:%d", host, port)
    return server
