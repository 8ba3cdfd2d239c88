"""Integration and sync job endpoints."""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.dependencies import get_hub
from connectors.base import ConnectionTestResult
from hub import Hub


router = APIRouter()


class IntegrationCreateRequest(BaseModel):
    """Request to create an integration."""
    name: str = Field(..., description="Display name")
    type: str = Field(..., description="import, export, sync or webhook")
    status: Optional[str] = Field(None, description="active, inactive or error (default inactive)")
    config: Dict[str, Any] = Field(default_factory=dict, description="Connector settings")


class IntegrationUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their current value."""
    name: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    config: Optional[Dict[str, Any]] = None


class SyncRequest(BaseModel):
    job_type: str = Field(..., description="Connector job type, e.g. sync_customers")
    options: Dict[str, Any] = Field(default_factory=dict)


class FailStaleRequest(BaseModel):
    older_than_hours: float = Field(..., gt=0, description="Fail unfinished jobs started before now minus this")


# =============================================================================
# Sync jobs (static paths first)
# =============================================================================

@router.get("/jobs/{job_id}")
async def get_sync_job(job_id: int, hub: Hub = Depends(get_hub)) -> Dict[str, Any]:
    """Status of one sync job."""
    return hub.integrations.job_status(job_id).to_dict()


@router.post("/jobs/fail-stale")
async def fail_stale_jobs(request: FailStaleRequest, hub: Hub = Depends(get_hub)) -> Dict[str, int]:
    """Operator action: mark long-unfinished sync jobs as failed."""
    failed = hub.integrations.fail_stale_jobs(timedelta(hours=request.older_than_hours))
    return {"failed": failed}


# =============================================================================
# Integrations
# =============================================================================

@router.get("")
async def list_integrations(
    type: Optional[str] = Query(None, description="Filter by integration type"),
    status: Optional[str] = Query(None, description="Filter by status"),
    hub: Hub = Depends(get_hub),
) -> List[Dict[str, Any]]:
    """List integrations ordered by name. Configs are not included."""
    return [i.to_dict(include_config=False) for i in hub.integrations.list(type, status)]


@router.post("", status_code=201)
async def create_integration(request: IntegrationCreateRequest, hub: Hub = Depends(get_hub)) -> Dict[str, Any]:
    integration_id = hub.integrations.create(request.model_dump(exclude_none=True))
    return hub.integrations.get(integration_id).to_dict(include_config=False)


@router.get("/{integration_id}")
async def get_integration(integration_id: int, hub: Hub = Depends(get_hub)) -> Dict[str, Any]:
    return hub.integrations.get(integration_id).to_dict()


@router.put("/{integration_id}")
async def update_integration(
    integration_id: int,
    request: IntegrationUpdateRequest,
    hub: Hub = Depends(get_hub),
) -> Dict[str, Any]:
    integration = hub.integrations.update(integration_id, request.model_dump(exclude_unset=True, exclude_none=True))
    return integration.to_dict(include_config=False)


@router.delete("/{integration_id}", status_code=204)
async def delete_integration(integration_id: int, hub: Hub = Depends(get_hub)) -> None:
    """Delete an integration with its sync jobs, mapping rules and webhooks."""
    hub.integrations.delete(integration_id)


@router.post("/{integration_id}/test", response_model=ConnectionTestResult)
async def test_integration(integration_id: int, hub: Hub = Depends(get_hub)) -> ConnectionTestResult:
    """Test the connection to the external system."""
    return await hub.integrations.test(integration_id)


@router.post("/{integration_id}/sync")
async def run_sync(integration_id: int, request: SyncRequest, hub: Hub = Depends(get_hub)) -> Dict[str, Any]:
    """Run a sync job and wait for it to finish.

    A connector failure returns 502 with the failed job id; the job row holds
    the error.
    """
    job_id = await hub.integrations.run_sync_job(integration_id, request.job_type, request.options)
    return hub.integrations.job_status(job_id).to_dict()


@router.get("/{integration_id}/jobs")
async def list_sync_jobs(
    integration_id: int,
    limit: int = Query(50, ge=1, le=500),
    hub: Hub = Depends(get_hub),
) -> List[Dict[str, Any]]:
    """Sync history, most recent first."""
    return [job.to_dict() for job in hub.integrations.jobs_for(integration_id, limit)]
