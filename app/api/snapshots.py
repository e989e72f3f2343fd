"""
/api/v1/snapshots endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.errors import respond
from app.dependencies import get_service, get_user_id, verify_api_key
from app.pipeline.service import AssetPipelineService
from app.schemas.api import NearbySnapshotsResponse, SnapshotListResponse

router = APIRouter(prefix="/api/v1/snapshots", tags=["snapshots"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=SnapshotListResponse)
async def list_snapshots(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_user_id),
    service: AssetPipelineService = Depends(get_service),
):
    """The caller's snapshots, latest statement date first."""
    return respond(await service.list_snapshots(user_id, limit))


@router.get("/nearby", response_model=NearbySnapshotsResponse)
async def nearby_snapshots(
    statement_date: str = Query(..., description="YYYY-MM-DD"),
    tolerance_days: Optional[int] = Query(None, ge=0, le=365),
    user_id: str = Depends(get_user_id),
    service: AssetPipelineService = Depends(get_service),
):
    """Snapshots dated within the tolerance of a statement date, nearest first."""
    return respond(await service.nearby_snapshots(user_id, statement_date, tolerance_days))
