"""
/api/v1/taxonomy endpoint.
Lists the active asset subclasses with their risk level and expected return.
"""

from fastapi import APIRouter, Depends

from app.dependencies import get_service, verify_api_key
from app.pipeline.service import AssetPipelineService

router = APIRouter(prefix="/api/v1/taxonomy", tags=["taxonomy"], dependencies=[Depends(verify_api_key)])


@router.get("")
async def list_taxonomy(service: AssetPipelineService = Depends(get_service)):
    mappings = service.taxonomy.mappings
    by_class: dict[str, list[str]] = {}
    for m in mappings:
        by_class.setdefault(m.asset_class, []).append(m.subclass_code)
    return {
        "total": len(mappings),
        "by_class": by_class,
        "mappings": [m.model_dump(mode="json") for m in mappings],
    }
