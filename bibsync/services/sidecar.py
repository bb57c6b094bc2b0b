"""
Build, serialize and parse the versioned annotation sidecar envelope.
"""

import json
import logging
from datetime import datetime
from typing import Optional, Sequence, Union

from pydantic import ValidationError

from bibsync.errors import MalformedEnvelopeError, SchemaVersionError
from bibsync.models import SIDECAR_SCHEMA_VERSION, AnnotationSidecar, utc_now

logger = logging.getLogger(__name__)


def build_sidecar(
    attachment_id: str,
    annotations: Sequence,
    version: int,
    author_id: str,
    now: Optional[datetime] = None,
) -> AnnotationSidecar:
    """Wrap ``annotations`` in a current-schema envelope stamped with ``now``."""
    return AnnotationSidecar(
        schema_version=SIDECAR_SCHEMA_VERSION,
        attachment_id=attachment_id,
        last_modified=now or utc_now(),
        version=version,
        created_by=author_id,
        annotations=list(annotations),
    )


def serialize_sidecar(sidecar: AnnotationSidecar) -> str:
    """Render the envelope as camelCase JSON with a 2-space indent; unset optionals are omitted."""
    return json.dumps(sidecar.to_wire(), indent=2, ensure_ascii=False)


def parse_sidecar(raw: Union[str, bytes, dict]) -> AnnotationSidecar:
    """
    Parse and validate a sidecar.

    Args:
        raw: JSON text or an already-decoded object

    Returns:
        Validated envelope

    Raises:
        SchemaVersionError: ``schemaVersion`` is not the current one
        MalformedEnvelopeError: Anything else structurally wrong
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise MalformedEnvelopeError(f"Sidecar is not valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise MalformedEnvelopeError("Sidecar must be a JSON object")

    schema_version = data.get("schemaVersion")
    if schema_version != SIDECAR_SCHEMA_VERSION:
        raise SchemaVersionError(schema_version)

    if not isinstance(data.get("annotations"), list):
        raise MalformedEnvelopeError("Sidecar 'annotations' must be an array")

    try:
        return AnnotationSidecar.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Rejected sidecar for {data.get('attachmentId')}: {e.error_count()} validation errors")
        raise MalformedEnvelopeError(f"Invalid sidecar: {e}") from e
