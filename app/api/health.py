"""
Health check endpoints.
/health always answers 200 and reports each dependency; /health/ready is
the strict probe.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.models.database import async_session_factory

router = APIRouter(tags=["health"])


async def _database_status() -> tuple[bool, str]:
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1, ""
    except (SQLAlchemyError, OSError) as e:
        return False, str(e)[:200]


@router.get("/health")
async def health_check():
    db_ok, db_error = await _database_status()
    response = {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "pipeline_version": settings.PIPELINE_VERSION,
        "database": "connected" if db_ok else "unreachable",
        "classification_oracle": "configured" if settings.ORACLE_API_KEY else "disabled",
        "security_lookup": "enabled" if settings.ENABLE_SECURITY_LOOKUP else "offline",
    }
    if db_error:
        response["database_error"] = db_error
    return response


@router.get("/health/ready")
async def readiness_check():
    """200 only when the database answers."""
    db_ok, _ = await _database_status()
    if not db_ok:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"ready": False})
    return {"ready": True}
