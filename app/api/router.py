"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from app.api.health import router as health_router
from app.api.uploads import router as uploads_router
from app.api.reviews import router as reviews_router
from app.api.snapshots import router as snapshots_router
from app.api.taxonomy import router as taxonomy_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(uploads_router)
api_router.include_router(reviews_router)
api_router.include_router(snapshots_router)
api_router.include_router(taxonomy_router)
