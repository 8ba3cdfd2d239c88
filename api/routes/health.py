"""Health check and metrics endpoints."""

import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from api.dependencies import get_hub
from core import __version__
from core.database import get_db_connection
from core.observability.metrics import get_metrics
from hub import Hub


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


def _storage_status(hub: Hub) -> str:
    try:
        conn = get_db_connection(hub.settings.db_path)
        try:
            conn.execute("SELECT 1 FROM integrations LIMIT 1")
        finally:
            conn.close()
    except sqlite3.Error:
        return "down"
    return "up"


@router.get("/health", response_model=HealthResponse)
async def health_check(hub: Hub = Depends(get_hub)) -> HealthResponse:
    """Health check endpoint."""
    storage = _storage_status(hub)
    return HealthResponse(
        status="healthy" if storage == "up" else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        services={
            "api": "up",
            "storage": storage,
            "connectors": ",".join(hub.registry.types()) or "none",
        },
    )


@router.get("/ready")
async def readiness_check(response: Response, hub: Hub = Depends(get_hub)) -> Dict[str, str]:
    """Readiness probe for Kubernetes."""
    if _storage_status(hub) != "up":
        response.status_code = 503
        return {"status": "not ready"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Liveness probe for Kubernetes."""
    return {"status": "alive"}


@router.get("/metrics")
async def metrics_summary() -> Dict[str, Any]:
    """In-memory sync and delivery metrics for this process."""
    return get_metrics().get_summary()
