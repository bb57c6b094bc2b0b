"""
Content-addressed local cache for PDF binaries and annotation sidecars.

PDFs live at ``<root>/pdfs/<sha256>.pdf`` so the same bytes are stored once
no matter how many attachments reference them. Answers "is X present and
intact" without touching the network.
"""

import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)

_HASH_CHUNK_SIZE = 1024 * 1024


def compute_sha256(file_path: Union[str, Path]) -> str:
    """
    Compute the SHA-256 hex digest of a file, streaming it in chunks.

    Args:
        file_path: File to hash

    Returns:
        Lowercase hex digest

    Raises:
        OSError: If the file cannot be read
    """
    digest = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(_HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class CacheStats(BaseModel):
    """Diagnostic snapshot of the PDF cache."""

    count: int = Field(default=0, description="Number of cached PDFs")
    total_bytes: int = Field(default=0, description="Sum of cached PDF sizes")


class ContentCache:
    """
    Checksum-addressed on-disk store.

    Content at a given checksum is assumed byte-identical by the hash's own
    guarantee, so stores are first-writer-wins and never overwrite.
    """

    PDF_DIR = "pdfs"
    SIDECAR_DIR = "annotations"

    def __init__(self, cache_root: Union[str, Path]):
        """
        Initialize the cache.

        Args:
            cache_root: Directory holding the ``pdfs/`` and ``annotations/`` subtrees
        """
        self.cache_root = Path(cache_root)
        self.pdfs_dir = self.cache_root / self.PDF_DIR
        self.sidecars_dir = self.cache_root / self.SIDECAR_DIR
        self.pdfs_dir.mkdir(parents=True, exist_ok=True)
        self.sidecars_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized ContentCache at {self.cache_root}")

    def path_for(self, checksum: str) -> Path:
        """Where a PDF with ``checksum`` lives; the file need not exist."""
        return self.pdfs_dir / f"{checksum}.pdf"

    def lookup(self, checksum: str) -> Optional[Path]:
        """Return the cached path if a file exists there. Does not hash."""
        path = self.path_for(checksum)
        return path if path.is_file() else None

    def verify(self, path: Union[str, Path], expected_checksum: str) -> bool:
        """
        Check that the file at ``path`` hashes to ``expected_checksum``.

        A missing, unreadable or mismatched file is a cache miss, not an error.
        """
        try:
            actual = compute_sha256(path)
        except OSError as e:
            logger.debug(f"Cache verify failed for {path}: {e}")
            return False

        if actual != expected_checksum:
            logger.warning(f"Cache entry {path} does not match checksum {expected_checksum[:8]}")
            return False
        return True

    def store(self, checksum: str, source_path: Union[str, Path]) -> Path:
        """
        Copy ``source_path`` into the cache under ``checksum``.

        Idempotent: an existing destination is left untouched. The copy goes
        through a temporary sibling and an atomic rename so readers never see
        a partial file.

        Raises:
            OSError: If the copy fails
        """
        dest = self.path_for(checksum)
        if dest.exists():
            logger.debug(f"PDF {checksum[:8]} already cached")
            return dest

        fd, tmp_name = tempfile.mkstemp(dir=self.pdfs_dir, prefix=f".{checksum[:8]}-", suffix=".part")
        os.close(fd)
        try:
            shutil.copyfile(source_path, tmp_name)
            if dest.exists():
                # Someone else stored the same content while we were copying
                os.unlink(tmp_name)
            else:
                os.replace(tmp_name, dest)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info(f"Cached PDF {checksum[:8]} at {dest}")
        return dest

    def temp_path_for(self, checksum: str) -> Path:
        """Scratch location inside the cache for a download that is not yet verified."""
        return self.pdfs_dir / f".{checksum}.download"

    def promote(self, temp_path: Path, checksum: str) -> Path:
        """Move a verified download into its content-addressed location."""
        dest = self.path_for(checksum)
        os.replace(temp_path, dest)
        return dest

    def sidecar_path_for(self, attachment_id: str) -> Path:
        """Local mirror location of an attachment's annotation sidecar."""
        return self.sidecars_dir / f"{attachment_id}.json"

    def store_sidecar(self, attachment_id: str, text: str) -> Path:
        """Write the serialized sidecar for ``attachment_id``, replacing any previous copy."""
        dest = self.sidecar_path_for(attachment_id)
        tmp = dest.with_suffix(".json.part")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, dest)
        return dest

    def stats(self) -> CacheStats:
        """Count cached PDFs and their total size. Scans the directory."""
        stats = CacheStats()
        for entry in self.pdfs_dir.iterdir():
            if entry.is_file() and entry.suffix == ".pdf" and not entry.name.startswith("."):
                stats.count += 1
                stats.total_bytes += entry.stat().st_size
        return stats
