"""Field mapping rule endpoints."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import get_hub
from hub import Hub


router = APIRouter()


class MappingRuleRequest(BaseModel):
    target_field: str = Field(..., description="Field name in the transformed record")
    transformation_rule: Optional[Dict[str, Any]] = Field(
        None, description='Rule object tagged by "type", e.g. {"type": "cast", "target_type": "int"}'
    )


class TransformRequest(BaseModel):
    records: List[Dict[str, Any]] = Field(..., description="Records to run through the integration's rules")


@router.get("/{integration_id}/mappings")
async def list_mappings(integration_id: int, hub: Hub = Depends(get_hub)) -> List[Dict[str, Any]]:
    hub.integrations.get(integration_id)
    return [rule.to_dict() for rule in hub.mappings.list(integration_id)]


@router.put("/{integration_id}/mappings/{source_field}")
async def save_mapping(
    integration_id: int,
    source_field: str,
    request: MappingRuleRequest,
    hub: Hub = Depends(get_hub),
) -> Dict[str, Any]:
    """Create or replace the rule for one source field."""
    rule = hub.mappings.save(integration_id, source_field, request.target_field, request.transformation_rule)
    return rule.to_dict()


@router.delete("/{integration_id}/mappings/{source_field}", status_code=204)
async def delete_mapping(integration_id: int, source_field: str, hub: Hub = Depends(get_hub)) -> None:
    if not hub.mappings.delete(integration_id, source_field):
        hub.mappings.get(integration_id, source_field)


@router.post("/{integration_id}/transform")
async def transform_records(
    integration_id: int,
    request: TransformRequest,
    hub: Hub = Depends(get_hub),
) -> Dict[str, Any]:
    """Dry-run the stored rules against sample records."""
    hub.integrations.get(integration_id)
    return {"records": hub.transformer.transform_records(request.records, integration_id)}
