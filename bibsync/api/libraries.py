"""
Library API endpoints.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from bibsync.api.errors import http_error
from bibsync.errors import BibSyncError
from bibsync.models import Item, ItemCreate, Library, LibraryType
from bibsync.runtime import Runtime, get_runtime

router = APIRouter()
logger = logging.getLogger(__name__)


class LibraryCreateRequest(BaseModel):
    """Library creation request."""
    name: str = Field(..., min_length=1)
    type: LibraryType = "personal"
    group_id: Optional[str] = None
    remote_root_id: Optional[str] = None


class AddPdfRequest(BaseModel):
    """Path of a PDF on the machine running the server."""
    path: str


@router.get("/libraries", response_model=List[Library])
async def list_libraries(runtime: Runtime = Depends(get_runtime)):
    """List all libraries ordered by name."""
    return runtime.library.list_libraries()


@router.post("/libraries", response_model=Library, status_code=201)
async def create_library(request: LibraryCreateRequest, runtime: Runtime = Depends(get_runtime)):
    """Create a personal or group library."""
    return runtime.library.create_library(
        name=request.name,
        type=request.type,
        group_id=request.group_id,
        remote_root_id=request.remote_root_id,
    )


@router.get("/libraries/{library_id}", response_model=Library)
async def get_library(library_id: str, runtime: Runtime = Depends(get_runtime)):
    try:
        return runtime.library.get_library(library_id)
    except BibSyncError as e:
        raise http_error(e) from e


@router.get("/groups/{group_id}/library", response_model=Library)
async def get_group_library(group_id: str, runtime: Runtime = Depends(get_runtime)):
    """Library bound to a group."""
    try:
        return runtime.library.get_library_for_group(group_id)
    except BibSyncError as e:
        raise http_error(e) from e


@router.get("/libraries/{library_id}/items", response_model=List[Item])
async def list_items(library_id: str, runtime: Runtime = Depends(get_runtime)):
    """List live items of a library ordered by title."""
    try:
        runtime.library.get_library(library_id)
        return runtime.library.list_items(library_id)
    except BibSyncError as e:
        raise http_error(e) from e


@router.post("/libraries/{library_id}/items", response_model=Item, status_code=201)
async def create_item(library_id: str, request: ItemCreate, runtime: Runtime = Depends(get_runtime)):
    try:
        return runtime.library.create_item(library_id, request)
    except BibSyncError as e:
        raise http_error(e) from e


@router.post("/libraries/{library_id}/pdfs", response_model=Item, status_code=201)
async def add_pdf(library_id: str, request: AddPdfRequest, runtime: Runtime = Depends(get_runtime)):
    """
    Add a local PDF to a library.

    Raises:
        HTTPException: 404 if the file or library is missing, 409 if the PDF is already in the library.
    """
    try:
        return await runtime.library.add_pdf(library_id, request.path)
    except BibSyncError as e:
        raise http_error(e) from e
    except OSError as e:
        logger.error(f"Failed to add {request.path}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to read or cache PDF: {e}")


@router.post("/groups/{group_id}/pdfs", response_model=Item, status_code=201)
async def add_pdf_to_group(group_id: str, request: AddPdfRequest, runtime: Runtime = Depends(get_runtime)):
    """Add a local PDF to the library bound to a group."""
    try:
        return await runtime.library.add_pdf_to_group(group_id, request.path)
    except BibSyncError as e:
        raise http_error(e) from e
    except OSError as e:
        logger.error(f"Failed to add {request.path}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to read or cache PDF: {e}")
