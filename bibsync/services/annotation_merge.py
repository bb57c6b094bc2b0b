"""
Union merge of two annotation sequences.

Annotations are identified by ``id``. Nothing is ever dropped: an annotation
present on either side survives, and when both sides carry the same id the
one with the strictly later ``modified_at`` wins (ties keep the local copy).
"""

from typing import Iterable, Sequence


def sort_annotations(annotations: Iterable) -> list:
    """Order by page ascending, then by vertical position descending (top of page first)."""
    return sorted(annotations, key=lambda a: (a.page, -a.vertical_position))


def merge_annotations(local: Sequence, remote: Sequence) -> list:
    """
    Merge ``remote`` into ``local``.

    Args:
        local: Annotations from the local store
        remote: Annotations from the remote sidecar

    Returns:
        New sorted list; neither input is modified
    """
    merged = {annotation.id: annotation for annotation in local}

    for annotation in remote:
        existing = merged.get(annotation.id)
        if existing is None or annotation.modified_at > existing.modified_at:
            merged[annotation.id] = annotation

    return sort_annotations(merged.values())
