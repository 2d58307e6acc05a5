"""Storage service for uploaded PDF files kept on local disk."""

import asyncio
import base64
import binascii
import re
from pathlib import Path
from typing import Optional
from uuid import uuid4

from doclink.core.config import settings
from doclink.core.exceptions import AppError, InvalidUploadError
from doclink.utils.logging import get_logger

LOGGER = get_logger(__name__)

PDF_MAGIC = b"%PDF-"


def decode_pdf(pdf_b64: str) -> bytes:
    """Decode a base64 payload and check it is a PDF.

    Raises:
        InvalidUploadError: If the payload is not valid base64 or not a PDF
    """
    try:
        content = base64.b64decode(pdf_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidUploadError("Upload is not valid base64", original_error=e)

    if not content.startswith(PDF_MAGIC):
        raise InvalidUploadError("Uploaded file is not a PDF")
    return content


def safe_file_name(file_name: str) -> str:
    name = Path(file_name).name
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    if not name:
        name = "document"
    if not name.lower().endswith(".pdf"):
        name = f"{name}.pdf"
    return name


class StorageService:
    """Service for writing uploaded files under the upload directory."""

    def __init__(self, upload_dir: Optional[str] = None):
        self.upload_dir = Path(upload_dir or settings.upload_dir)

    async def save_pdf(self, file_name: str, content: bytes) -> str:
        """Write a PDF to the upload directory.

        Each upload lands in its own sub-directory so two files with the
        same name never overwrite each other.

        Args:
            file_name: Original file name supplied by the client
            content: Raw PDF bytes

        Returns:
            Path of the written file

        Raises:
            AppError: If the file cannot be written
        """
        target = self.upload_dir / uuid4().hex / safe_file_name(file_name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_bytes, content)
        except OSError as e:
            LOGGER.error(
                f"Error writing uploaded file: {str(e)}",
                exc_info=True,
                extra={"path": str(target)}
            )
            raise AppError(f"Storage write error: {str(e)}", original_error=e)

        LOGGER.info(f"Stored upload {file_name} at {target}", extra={"bytes": len(content)})
        return str(target)
