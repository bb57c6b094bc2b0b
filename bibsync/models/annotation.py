"""
Data models for PDF annotations, annotation sets and the sidecar envelope.

Annotations are a tagged union on ``type``: each kind carries only the
geometry and content fields that make sense for it, so a note with
rectangles or a highlight with a point position fails validation.
"""

from pathlib import Path
from typing import Annotated, Literal, Optional, Union
from pydantic import ConfigDict, Field

from bibsync.models.common import CamelModel, UTCDateTime, utc_now

SIDECAR_SCHEMA_VERSION = 1


class Rect(CamelModel):
    """Rectangle in PDF user-space coordinates (y grows upwards)."""

    x1: float
    y1: float
    x2: float
    y2: float


class Position(CamelModel):
    """Point in PDF user-space coordinates."""

    x: float
    y: float


class AnnotationBase(CamelModel):
    """Fields shared by every annotation kind. Instances are immutable."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., description="Globally unique, author-assigned ID; the merge key")
    page: int = Field(..., ge=1, description="1-based page number")
    created_by: str
    created_at: UTCDateTime
    modified_at: UTCDateTime

    @property
    def vertical_position(self) -> float:
        """Sort key within a page; 0 when the annotation has no geometry."""
        return 0.0


class HighlightAnnotation(AnnotationBase):
    type: Literal["highlight"] = "highlight"
    rects: list[Rect] = Field(default_factory=list)
    color: Optional[str] = None
    text: Optional[str] = Field(None, description="Highlighted text")
    comment: Optional[str] = None

    @property
    def vertical_position(self) -> float:
        return self.rects[0].y1 if self.rects else 0.0


class NoteAnnotation(AnnotationBase):
    type: Literal["note"] = "note"
    position: Optional[Position] = None
    color: Optional[str] = None
    content: Optional[str] = None

    @property
    def vertical_position(self) -> float:
        return self.position.y if self.position else 0.0


class AreaAnnotation(AnnotationBase):
    type: Literal["area"] = "area"
    rects: list[Rect] = Field(default_factory=list)
    color: Optional[str] = None
    comment: Optional[str] = None

    @property
    def vertical_position(self) -> float:
        return self.rects[0].y1 if self.rects else 0.0


Annotation = Annotated[
    Union[HighlightAnnotation, NoteAnnotation, AreaAnnotation],
    Field(discriminator="type"),
]


class AnnotationSet(CamelModel):
    """Mutable container of one attachment's annotations."""

    id: str
    attachment_id: str
    annotations: list[Annotation] = Field(default_factory=list)
    remote_file_id: Optional[str] = None
    remote_revision: Optional[str] = None
    local_version: int = Field(default=1, description="Incremented on every local save")
    remote_version: int = Field(default=0, description="Last version confirmed on the file store")
    is_dirty: bool = Field(default=False, description="Local content not yet confirmed remotely")
    created_by: Optional[str] = None
    created_at: UTCDateTime = Field(default_factory=utc_now)
    modified_at: UTCDateTime = Field(default_factory=utc_now)


class AnnotationSidecar(CamelModel):
    """Versioned envelope persisted on the file store as ``<attachmentId>.json``."""

    schema_version: int = SIDECAR_SCHEMA_VERSION
    attachment_id: str
    last_modified: UTCDateTime
    version: int
    created_by: str
    annotations: list[Annotation] = Field(default_factory=list)


class ViewerSession(CamelModel):
    """Everything a viewer needs to open a PDF for annotation."""

    pdf_path: Path
    annotations: list[Annotation]
    annotation_set_id: str
    attachment_id: str
