"""
Durable staging of uploaded CAS documents.

Validates size and type before anything is written, then keeps exactly one
document per client on local disk.
"""

import os
import re
import tempfile
import time
from pathlib import Path
from typing import Any, Dict

import magic
import structlog

from app.core.exceptions import StorageIOError, ValidationError

logger = structlog.get_logger()

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_NAME_LENGTH = 100


def sanitize_file_name(original_name: str) -> str:
    """Strip directories and replace anything outside [A-Za-z0-9._-] with '_'."""
    base = Path(original_name.replace("\\", "/")).name
    cleaned = _UNSAFE_NAME_CHARS.sub("_", base).strip("._") or "statement.pdf"
    return cleaned[-_MAX_NAME_LENGTH:]


class FileStager:
    """
    Persists, replaces and deletes staged CAS PDFs.
    """

    MAX_FILE_SIZE = 10 * 1024 * 1024
    ACCEPTED_EXTENSION = ".pdf"
    ACCEPTED_MIME_TYPE = "application/pdf"
    PDF_MAGIC = b"%PDF-"

    def __init__(self, base_dir: str, max_file_size: int = MAX_FILE_SIZE):
        self.base_dir = Path(base_dir)
        self.max_file_size = max_file_size
        self.magic = magic.Magic(mime=True)

    def validate(self, data: bytes, original_name: str) -> Dict[str, Any]:
        """Reject anything that is not a PDF within the size cap."""
        file_size = len(data)

        if file_size == 0:
            raise ValidationError("No CAS file uploaded", details={"file_name": original_name})

        if file_size > self.max_file_size:
            raise ValidationError(
                f"File too large ({file_size / 1024 / 1024:.1f}MB > "
                f"{self.max_file_size / 1024 / 1024:.0f}MB)",
                details={"size_bytes": file_size, "max_bytes": self.max_file_size},
            )

        if not original_name.lower().endswith(self.ACCEPTED_EXTENSION):
            raise ValidationError(
                "Only PDF files are allowed for CAS upload",
                details={"file_name": original_name},
            )

        try:
            mime_type = self.magic.from_buffer(data)
        except magic.MagicException as e:
            logger.error("cas_upload_mime_detection_failed", file_name=original_name, error=str(e))
            raise ValidationError(
                "Failed to validate file type", details={"file_name": original_name}
            ) from e

        if mime_type != self.ACCEPTED_MIME_TYPE:
            logger.warning(
                "cas_upload_invalid_mime_type", detected_mime=mime_type, file_name=original_name
            )
            raise ValidationError(
                "File is not a valid PDF (magic bytes mismatch)",
                details={"file_name": original_name, "mime_type": mime_type},
            )

        if not data.startswith(self.PDF_MAGIC):
            logger.warning("cas_upload_magic_bytes_mismatch", file_name=original_name)
            raise ValidationError(
                "Invalid PDF header",
                details={"file_name": original_name},
            )

        return {"valid": True, "size_bytes": file_size, "mime_type": mime_type}

    def _target_path(self, client_id: str, original_name: str) -> Path:
        name = sanitize_file_name(original_name)
        timestamp_ms = int(time.time() * 1000)
        target = self.base_dir / f"cas-{client_id}-{timestamp_ms}-{name}"
        # Never reuse the path of a document that is still staged
        while target.exists():
            timestamp_ms += 1
            target = self.base_dir / f"cas-{client_id}-{timestamp_ms}-{name}"
        return target

    def store(self, data: bytes, original_name: str, client_id: str) -> str:
        """
        Validate and write a document, returning its storage path.

        The write goes to a temp file in the same directory and is renamed
        into place, so a reader never sees a half-written PDF.
        """
        self.validate(data, original_name)
        target = self._target_path(client_id, original_name)

        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.base_dir, suffix=".part")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_path, target)
            except OSError:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            logger.error("cas_file_store_failed", client_id=client_id, error=str(e))
            raise StorageIOError(
                "Failed to store CAS file", details={"client_id": client_id}
            ) from e

        logger.info(
            "cas_file_stored",
            client_id=client_id,
            storage_path=str(target),
            size_bytes=len(data),
        )
        return str(target)

    def replace(
        self, existing_path: str, data: bytes, original_name: str, client_id: str
    ) -> str:
        """Delete the prior document, then store the new one."""
        self.validate(data, original_name)
        if existing_path:
            self.delete(existing_path)
        return self.store(data, original_name, client_id)

    def delete(self, path: str) -> bool:
        """Remove a staged document. Returns False if it was already gone."""
        try:
            os.unlink(path)
        except FileNotFoundError:
            logger.debug("cas_file_already_absent", storage_path=path)
            return False
        except OSError as e:
            logger.error("cas_file_delete_failed", storage_path=path, error=str(e))
            raise StorageIOError("Failed to delete CAS file") from e

        logger.info("cas_file_deleted", storage_path=path)
        return True

    def exists(self, path: str) -> bool:
        return bool(path) and os.path.isfile(path)
