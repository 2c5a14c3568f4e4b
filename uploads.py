"""
Image upload storage

Uploaded images are written to UPLOAD_DIR/<folder>/ and referenced from
documents by their public path ``/uploads/<folder>/<filename>``.
"""
import logging
import os
import secrets
import time
from pathlib import Path
from typing import List, Optional, Tuple

from fastapi import HTTPException, UploadFile

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_UPLOAD_BYTES = 5 * 1024 * 1024
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


def read_upload(file: UploadFile) -> Tuple[str, bytes]:
    """Check an upload's extension and size and return them with its bytes."""
    ext = Path(file.filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Only image files are allowed!")

    data = file.file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File size too large. Maximum size is 5MB.")
    return ext, data


def write_upload(ext: str, data: bytes, folder: str, prefix: str) -> str:
    target_dir = Path(UPLOAD_DIR) / folder
    target_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"
    (target_dir / filename).write_bytes(data)
    return f"/uploads/{folder}/{filename}"


def save_upload(file: UploadFile, folder: str, prefix: str) -> str:
    ext, data = read_upload(file)
    return write_upload(ext, data, folder, prefix)


def save_uploads(files: List[UploadFile], folder: str, prefix: str) -> List[str]:
    """Store several uploads. Nothing is written unless every file is valid."""
    checked = [read_upload(f) for f in files]
    return [write_upload(ext, data, folder, prefix) for ext, data in checked]


def discard_uploads(paths: List[str]) -> None:
    for path in paths:
        remove_upload(path)


def remove_upload(path: Optional[str]) -> bool:
    """Delete a stored upload given its public path. Returns True if a file was removed."""
    if not path or not path.startswith("/uploads/"):
        return False
    relative = path[len("/uploads/"):]
    root = Path(UPLOAD_DIR).resolve()
    target = (root / relative).resolve()
    if root not in target.parents or not target.is_file():
        return False
    target.unlink()
    logger.info("Removed upload %s", path)
    return True
