"""
Translation of domain errors into HTTP errors.
"""

import logging

from fastapi import HTTPException

from bibsync.errors import (
    DuplicateError,
    IntegrityError,
    NoRemoteRootError,
    NotFoundError,
    RemoteError,
    SidecarError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)


def http_error(error: Exception) -> HTTPException:
    """Map a domain error to the HTTPException the endpoint should raise."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, DuplicateError):
        return HTTPException(
            status_code=409,
            detail={"message": str(error), "existingAttachmentId": error.existing_attachment_id},
        )
    if isinstance(error, (VersionConflictError, NoRemoteRootError)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ValueError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, (IntegrityError, SidecarError, RemoteError)):
        return HTTPException(status_code=502, detail=str(error))

    logger.error(f"Unexpected error: {error}", exc_info=error)
    return HTTPException(status_code=500, detail=f"Internal error: {error}")
