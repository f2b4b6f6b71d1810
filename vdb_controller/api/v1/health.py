"""
Health probe endpoints for the controller process.
Provides liveness and readiness checks for Kubernetes.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from vdb_controller.config.settings import settings

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/healthz")
async def liveness():
    """
    Kubernetes liveness probe.
    Indicates whether the process should be restarted.
    """
    return {"status": "ok", "version": settings.app_version, "timestamp": _now()}


@router.get("/readyz")
async def readiness(request: Request):
    """
    Kubernetes readiness probe.

    Ready once the manager has connected to its dependencies and, if this
    replica leads, runs the controller. Leadership is reported in the body
    only; a standby replica is ready.
    """
    manager = request.app.state.manager
    ready = manager.ready
    body = {
        "status": "ready" if ready else "not_ready",
        "leader_election": manager.leader_elect,
        "leader": manager.is_leader,
        "controller": "running" if manager.controller_running else "stopped",
        "timestamp": _now(),
    }
    if not ready:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body
