"""
/api/v1/uploads endpoint.
Accepts a batch of statement files and returns the batch summary of the review session it created.
"""

import structlog
from fastapi import APIRouter, Depends, File, UploadFile, status

from app.api.errors import respond
from app.dependencies import get_service, get_user_id, verify_api_key
from app.pipeline.service import AssetPipelineService
from app.schemas.api import IncomingFile, IngestResponse

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/uploads", tags=["uploads"], dependencies=[Depends(verify_api_key)])


@router.post("", response_model=IngestResponse, status_code=status.HTTP_201_CREATED)
async def upload_batch(
    files: list[UploadFile] = File(...),
    user_id: str = Depends(get_user_id),
    service: AssetPipelineService = Depends(get_service),
):
    """Upload 1-10 CSV, Excel or PDF statements for extraction and review."""
    incoming = []
    for f in files:
        incoming.append(IncomingFile(
            file_name=f.filename or "upload",
            content=await f.read(),
            content_type=f.content_type,
        ))

    logger.info("batch_received", files=len(incoming), user_id=user_id)
    response = await service.ingest(user_id, incoming)
    return respond(response, status.HTTP_201_CREATED)
