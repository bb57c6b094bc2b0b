"""
Annotation API endpoints.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from bibsync.api.errors import http_error
from bibsync.errors import BibSyncError
from bibsync.models import Annotation, AnnotationSet, ViewerSession
from bibsync.runtime import Runtime, get_runtime

router = APIRouter()
logger = logging.getLogger(__name__)


class SaveAnnotationsRequest(BaseModel):
    """Full annotation list of one attachment, as edited in the viewer."""
    annotations: List[Annotation]


@router.get("/attachments/{attachment_id}/annotations", response_model=AnnotationSet)
async def get_annotations(attachment_id: str, runtime: Runtime = Depends(get_runtime)):
    try:
        return runtime.library.get_annotations(attachment_id)
    except BibSyncError as e:
        raise http_error(e) from e


@router.put("/attachments/{attachment_id}/annotations", response_model=AnnotationSet)
async def save_annotations(
    attachment_id: str,
    request: SaveAnnotationsRequest,
    runtime: Runtime = Depends(get_runtime),
):
    """
    Save annotations locally and try to upload them.

    A failed upload is queued and does not fail the request.

    Raises:
        HTTPException: 404 for an unknown attachment, 502 if the remote sidecar is unreadable.
    """
    try:
        return await runtime.library.save_annotations(attachment_id, request.annotations)
    except BibSyncError as e:
        raise http_error(e) from e


@router.post("/attachments/{attachment_id}/open", response_model=ViewerSession)
async def open_for_annotate(attachment_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Prepare a PDF for the viewer.

    Returns:
        Local PDF path plus the merged annotations.
    """
    try:
        return await runtime.library.open_pdf_for_annotate(attachment_id)
    except BibSyncError as e:
        logger.warning(f"Cannot open attachment {attachment_id}: {e}")
        raise http_error(e) from e
