"""
Item and attachment API endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends

from bibsync.api.errors import http_error
from bibsync.errors import BibSyncError
from bibsync.models import Attachment, Item, ItemUpdate
from bibsync.runtime import Runtime, get_runtime

router = APIRouter()


@router.get("/items/{item_id}", response_model=Item)
async def get_item(item_id: str, runtime: Runtime = Depends(get_runtime)):
    try:
        return runtime.library.get_item(item_id)
    except BibSyncError as e:
        raise http_error(e) from e


@router.patch("/items/{item_id}", response_model=Item)
async def update_item(item_id: str, request: ItemUpdate, runtime: Runtime = Depends(get_runtime)):
    """
    Update the fields present in the request body.

    Omitted fields keep their values; the item version goes up by one.
    """
    try:
        return runtime.library.update_item(item_id, request)
    except BibSyncError as e:
        raise http_error(e) from e


@router.delete("/items/{item_id}", response_model=Item)
async def delete_item(item_id: str, runtime: Runtime = Depends(get_runtime)):
    """Soft-delete an item."""
    try:
        return runtime.library.delete_item(item_id)
    except BibSyncError as e:
        raise http_error(e) from e


@router.get("/items/{item_id}/attachments", response_model=List[Attachment])
async def list_attachments(item_id: str, runtime: Runtime = Depends(get_runtime)):
    try:
        return runtime.library.list_attachments(item_id)
    except BibSyncError as e:
        raise http_error(e) from e


@router.get("/attachments/{attachment_id}", response_model=Attachment)
async def get_attachment(attachment_id: str, runtime: Runtime = Depends(get_runtime)):
    try:
        return runtime.library.get_attachment(attachment_id)
    except BibSyncError as e:
        raise http_error(e) from e
