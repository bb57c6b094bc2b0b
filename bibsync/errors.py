"""
Exception taxonomy shared by the store, the services and the remote clients.
"""

from typing import Optional


class BibSyncError(Exception):
    """Base class for all domain errors."""


class NotFoundError(BibSyncError):
    """A referenced library, item, attachment or annotation set does not exist."""


class DuplicateError(BibSyncError):
    """A PDF with the same checksum already exists in the target library."""

    def __init__(self, message: str, existing_attachment_id: Optional[str] = None):
        super().__init__(message)
        self.existing_attachment_id = existing_attachment_id


class IntegrityError(BibSyncError):
    """Downloaded content does not hash to the expected checksum."""

    def __init__(self, message: str, expected: Optional[str] = None, actual: Optional[str] = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class SidecarError(BibSyncError):
    """An annotation sidecar could not be read. Never retried."""


class SchemaVersionError(SidecarError):
    """The sidecar was written by an unsupported schema generation."""

    def __init__(self, schema_version):
        super().__init__(f"Unsupported annotation schema version: {schema_version}")
        self.schema_version = schema_version


class MalformedEnvelopeError(SidecarError):
    """The sidecar envelope is structurally invalid."""


class NoRemoteRootError(BibSyncError):
    """The library has no remote root folder, so nothing can be uploaded."""


class VersionConflictError(BibSyncError):
    """The remote side has advanced past the version we based our write on."""


class RemoteError(BibSyncError):
    """A remote call failed without a definitive answer (transient or unexpected)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
