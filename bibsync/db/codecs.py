"""
Encode/decode pairs for the structured fields stored as TEXT columns.

Every structured column goes through exactly one pair here; decoding
validates, so a corrupt row fails loudly instead of leaking raw JSON
into the services.
"""

from typing import Any, Optional

from pydantic import TypeAdapter

from bibsync.models.annotation import Annotation
from bibsync.models.item import Author, Item

_AUTHORS = TypeAdapter(list[Author])
_TAGS = TypeAdapter(list[str])
_EXTRA = TypeAdapter(dict[str, Any])
_ANNOTATIONS = TypeAdapter(list[Annotation])
_ITEM = TypeAdapter(Item)


def encode_authors(authors: list[Author]) -> str:
    return _AUTHORS.dump_json(authors, by_alias=True).decode("utf-8")


def decode_authors(text: Optional[str]) -> list[Author]:
    if not text:
        return []
    return _AUTHORS.validate_json(text)


def encode_tags(tags: list[str]) -> str:
    return _TAGS.dump_json(tags).decode("utf-8")


def decode_tags(text: Optional[str]) -> list[str]:
    if not text:
        return []
    return _TAGS.validate_json(text)


def encode_extra(extra: dict[str, Any]) -> str:
    return _EXTRA.dump_json(extra).decode("utf-8")


def decode_extra(text: Optional[str]) -> dict[str, Any]:
    if not text:
        return {}
    return _EXTRA.validate_json(text)


def encode_annotations(annotations: list) -> str:
    return _ANNOTATIONS.dump_json(annotations, by_alias=True, exclude_none=True).decode("utf-8")


def decode_annotations(text: Optional[str]) -> list:
    if not text:
        return []
    return _ANNOTATIONS.validate_json(text)


def encode_item(item: Item) -> str:
    """Snapshot of a whole item (used for conflict records)."""
    return _ITEM.dump_json(item, by_alias=True).decode("utf-8")


def decode_item(text: str) -> Item:
    return _ITEM.validate_json(text)
