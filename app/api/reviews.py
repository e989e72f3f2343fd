"""
/api/v1/reviews endpoints.
Inspect, edit, deduplicate, finalize or cancel a review session.
"""

from fastapi import APIRouter, Depends

from app.api.errors import respond
from app.dependencies import get_service, get_user_id, verify_api_key
from app.pipeline.service import AssetPipelineService
from app.schemas.api import (
    BoundaryResponse,
    DeselectRequest,
    DuplicatesResponse,
    FinalizeOptions,
    FinalizeResponse,
    ResolutionResponse,
    ResolveConflictsRequest,
    ResolveDuplicatesRequest,
    ReviewResponse,
    UpdateStagedRequest,
    UpdateStagedResponse,
)

router = APIRouter(prefix="/api/v1/reviews", tags=["reviews"], dependencies=[Depends(verify_api_key)])


@router.get("/{session_id}", response_model=ReviewResponse)
async def get_review(
    session_id: str,
    user_id: str = Depends(get_user_id),
    service: AssetPipelineService = Depends(get_service),
):
    """Session metadata and every staged asset, in ingest order."""
    return respond(await service.review(user_id, session_id))


@router.patch("/{session_id}/assets", response_model=UpdateStagedResponse)
async def update_assets(
    session_id: str,
    body: UpdateStagedRequest,
    user_id: str = Depends(get_user_id),
    service: AssetPipelineService = Depends(get_service),
):
    """Apply edits now, or queue them on the session's autosaver with debounce=true."""
    return respond(await service.update_staged(user_id, session_id, body.patches, body.debounce))


@router.post("/{session_id}/deselect", response_model=UpdateStagedResponse)
async def deselect_assets(
    session_id: str,
    body: DeselectRequest,
    user_id: str = Depends(get_user_id),
    service: AssetPipelineService = Depends(get_service),
):
    return respond(await service.deselect(user_id, session_id, body.asset_ids))


@router.get("/{session_id}/duplicates", response_model=DuplicatesResponse)
async def get_duplicates(
    session_id: str,
    user_id: str = Depends(get_user_id),
    service: AssetPipelineService = Depends(get_service),
):
    return respond(await service.get_duplicates(user_id, session_id))


@router.post("/{session_id}/duplicates/resolve", response_model=ResolutionResponse)
async def resolve_duplicates(
    session_id: str,
    body: ResolveDuplicatesRequest,
    user_id: str = Depends(get_user_id),
    service: AssetPipelineService = Depends(get_service),
):
    return respond(await service.resolve_duplicates(user_id, session_id, body.decisions))


@router.post("/{session_id}/conflicts/resolve", response_model=ResolutionResponse)
async def resolve_conflicts(
    session_id: str,
    body: ResolveConflictsRequest,
    user_id: str = Depends(get_user_id),
    service: AssetPipelineService = Depends(get_service),
):
    return respond(await service.resolve_conflicts(user_id, session_id, body.decisions))


@router.post("/{session_id}/finalize", response_model=FinalizeResponse)
async def finalize_review(
    session_id: str,
    body: FinalizeOptions,
    user_id: str = Depends(get_user_id),
    service: AssetPipelineService = Depends(get_service),
):
    """Commit the selected assets into a new snapshot or merge them into an existing one."""
    return respond(await service.finalize(user_id, session_id, body))


@router.delete("/{session_id}", response_model=BoundaryResponse)
async def cancel_review(
    session_id: str,
    user_id: str = Depends(get_user_id),
    service: AssetPipelineService = Depends(get_service),
):
    return respond(await service.cancel(user_id, session_id))
