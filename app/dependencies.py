"""
FastAPI dependency injection.
Provides the pipeline service, artifact store, caller identity and API key validation.
"""

from typing import Optional

from fastapi import Header, HTTPException, status

from app.config import settings
from app.oracles.classification import build_classification_oracle
from app.oracles.security_lookup import build_security_lookup
from app.pipeline.service import AssetPipelineService
from app.storage.artifact_store import ArtifactStore
from app.storage.repository import AssetRepository
from app.storage.sql_repository import SqlAssetRepository


# ── Singleton instances ──────────────────────────────────────
_artifact_store: Optional[ArtifactStore] = None
_repository: Optional[AssetRepository] = None
_service: Optional[AssetPipelineService] = None


def get_artifact_store() -> ArtifactStore:
    """Get or create the artifact store singleton."""
    global _artifact_store
    if _artifact_store is None:
        _artifact_store = ArtifactStore()
    return _artifact_store


def get_repository() -> AssetRepository:
    global _repository
    if _repository is None:
        _repository = SqlAssetRepository()
    return _repository


async def get_service() -> AssetPipelineService:
    """The service singleton; the taxonomy is loaded (and seeded) on first use."""
    global _service
    if _service is None:
        _service = await AssetPipelineService.create(
            get_repository(),
            oracle=build_classification_oracle(),
            lookup=build_security_lookup(),
            artifacts=get_artifact_store(),
        )
    return _service


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key


async def get_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """The calling user. Every store access is scoped to it."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()


async def close_service() -> None:
    """Close the HTTP clients held by the service's oracles."""
    global _service
    if _service is None:
        return
    for client in (_service.pipeline.oracle, _service.pipeline.lookup):
        aclose = getattr(client, "aclose", None)
        if aclose is not None:
            await aclose()
    _service = None
