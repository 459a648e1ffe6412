"""
Local disk storage for channel attachments.

Uploads are validated (filename sanitisation, MIME whitelist, size limit)
and written with aiofiles under `UPLOAD_DIR/channel_<id>/<YYYYMMDD>/`.
"""
import mimetypes
import os
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
from fastapi import HTTPException, UploadFile

from app.core.config import settings
from app.core.logging import storage_logger

MAX_FILE_SIZE = settings.MAX_UPLOAD_MB * 1024 * 1024

ALLOWED_MIME_TYPES = {
    # Images
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    # Documents
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    # Text
    "text/plain",
    "text/csv",
    "text/markdown",
    "application/json",
    # Archives
    "application/zip",
    "application/x-zip-compressed",
}

BLOCKED_EXTENSIONS = {
    ".exe", ".bat", ".cmd", ".com", ".msi", ".scr",
    ".ps1", ".vbs", ".js", ".jse", ".wsf", ".wsh",
    ".sh", ".bash", ".py", ".rb", ".pl", ".php",
    ".dll", ".sys", ".app", ".dmg", ".pkg", ".deb", ".rpm",
}


@dataclass(frozen=True)
class StoredFile:
    filename: str
    storage_path: str
    size: int
    mime_type: str


def sanitize_filename(filename: str) -> str:
    """
    Strip path components, null bytes and unusual characters.
    Inner dots are folded so a name cannot hide its real extension
    ("report.pdf.exe" -> "report_pdf.exe").
    """
    if not filename:
        return "unnamed_file"

    filename = os.path.basename(filename.replace("\\", "/"))
    filename = filename.replace("\x00", "")
    filename = re.sub(r"[^\w\-.]", "_", filename)

    parts = filename.rsplit(".", 1)
    if len(parts) == 2:
        name, ext = parts
        filename = f"{name.replace('.', '_')}.{ext}"

    if len(filename) > 200:
        name, ext = os.path.splitext(filename)
        filename = name[:200 - len(ext)] + ext

    return filename or "unnamed_file"


def storage_path_for(original_filename: str, channel_id: int) -> Tuple[str, str]:
    """Return (sanitized_name, relative_path) for a new upload."""
    safe_name = sanitize_filename(original_filename)
    name, ext = os.path.splitext(safe_name)
    day = datetime.now(timezone.utc).strftime("%Y%m%d")
    stored_name = f"{name}_{uuid.uuid4().hex[:12]}{ext}"
    return safe_name, f"channel_{channel_id}/{day}/{stored_name}"


def validate_file_type(filename: str, content_type: Optional[str]) -> str:
    """Return the accepted MIME type or raise a 400."""
    ext = os.path.splitext(filename.lower())[1]
    if ext in BLOCKED_EXTENSIONS:
        raise HTTPException(status_code=400, detail=f"File type '{ext}' is not allowed for security reasons")

    if content_type and content_type in ALLOWED_MIME_TYPES:
        return content_type

    guessed_type, _ = mimetypes.guess_type(filename)
    if guessed_type and guessed_type in ALLOWED_MIME_TYPES:
        return guessed_type

    if ext in {".txt", ".log", ".md"}:
        return "text/plain"

    raise HTTPException(
        status_code=400,
        detail=f"File type '{content_type or ext}' is not allowed. Allowed types: images, PDFs, documents, text files.",
    )


def validate_file_size(size: int) -> None:
    if size > MAX_FILE_SIZE:
        raise HTTPException(status_code=400, detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_MB}MB")
    if size == 0:
        raise HTTPException(status_code=400, detail="Empty files are not allowed")


async def read_validated_upload(file: UploadFile, channel_id: int) -> Tuple[bytes, str, str, str]:
    """Read and validate an upload. Returns (content, sanitized_name, relative_path, mime_type)."""
    original = file.filename or "unnamed"
    mime_type = validate_file_type(original, file.content_type)
    content = await file.read()
    validate_file_size(len(content))
    safe_name, relative_path = storage_path_for(original, channel_id)
    return content, safe_name, relative_path, mime_type


class LocalStorage:
    backend = "local"

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.UPLOAD_DIR)

    def full_path(self, storage_path: str) -> Path:
        path = (self.root / storage_path).resolve()
        if self.root.resolve() not in path.parents:
            raise HTTPException(status_code=400, detail="Invalid storage path")
        return path

    async def save(self, file: UploadFile, channel_id: int) -> StoredFile:
        content, safe_name, relative_path, mime_type = await read_validated_upload(file, channel_id)
        full_path = self.full_path(relative_path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(full_path, "wb") as f:
            await f.write(content)
        storage_logger.info("File stored", backend=self.backend, path=relative_path, size=len(content))
        return StoredFile(safe_name, relative_path, len(content), mime_type)

    async def delete(self, storage_path: str) -> bool:
        full_path = self.full_path(storage_path)
        if full_path.exists():
            full_path.unlink()
            return True
        return False

    def exists(self, storage_path: str) -> bool:
        return self.full_path(storage_path).exists()

    def url_for(self, attachment_id: int, storage_path: str) -> str:
        return f"/api/attachments/{attachment_id}/download"
