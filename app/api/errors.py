"""
Maps boundary response error codes to HTTP status codes.
"""

from fastapi import status
from fastapi.responses import JSONResponse

from app.schemas.api import BoundaryResponse

STATUS_BY_ERROR_CODE = {
    "SESSION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "ASSET_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "TARGET_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NO_VALID_ASSETS": status.HTTP_404_NOT_FOUND,
    "SESSION_EXPIRED": status.HTTP_410_GONE,
    "SESSION_FINALIZED": status.HTTP_409_CONFLICT,
    "SESSION_CANCELLED": status.HTTP_409_CONFLICT,
    "TOO_MANY_FILES": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    "ALL_FILES_FAILED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "NO_ASSETS": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "PERSISTENCE_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "SESSION_CREATE_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "STAGING_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "UPDATE_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "SNAPSHOT_CREATE_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "SNAPSHOT_UPDATE_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "INSERT_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "INTERNAL_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def respond(response: BoundaryResponse, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """The response record as JSON, with a status code derived from its error code."""
    if response.success:
        code = success_status
    else:
        code = STATUS_BY_ERROR_CODE.get(response.error_code, status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=code, content=response.model_dump(mode="json"))
