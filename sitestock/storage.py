"""
sitestock/storage.py

Local file storage for bills (incoming) and issue slips (outgoing).

Layout:
    UPLOAD_FOLDER/<folder>/<site_code>_<ms timestamp>.<ext>

Links handed to the browser are signed, time-limited tokens (itsdangerous) so a
stored file name cannot be guessed or reused after SIGNED_URL_MAX_AGE seconds.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Optional

from flask import current_app, url_for
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "bmp", "webp", "pdf", "doc", "docx"}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "bmp", "webp"}

_SALT = "sitestock-file"


class StorageError(Exception):
    """Raised when an uploaded file cannot be accepted or written."""


@dataclass(frozen=True)
class StoredFile:
    file_name: str
    original_name: str
    size: int
    content_type: Optional[str]


def _extension(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


def is_image(filename: str | None) -> bool:
    return _extension(filename or "") in IMAGE_EXTENSIONS


def is_pdf(filename: str | None) -> bool:
    return _extension(filename or "") == "pdf"


def _file_size(upload: FileStorage) -> int:
    stream = upload.stream
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def has_upload(upload: FileStorage | None) -> bool:
    return bool(upload is not None and upload.filename)


def save_upload(upload: FileStorage, folder: str, site_code: str) -> StoredFile:
    """
    Validate and store an uploaded file. Returns the stored reference.

    Raises StorageError for oversize files, disallowed types and write failures.
    """
    original_name = upload.filename or ""
    ext = _extension(original_name)
    if ext not in ALLOWED_EXTENSIONS:
        raise StorageError("Unsupported file type. Use images, PDF or Word documents.")

    size = _file_size(upload)
    max_bytes = current_app.config.get("MAX_UPLOAD_BYTES", 10 * 1024 * 1024)
    if size > max_bytes:
        raise StorageError("File size must be less than 10MB")

    folder = secure_filename(folder) or "files"
    stored_name = f"{folder}/{secure_filename(site_code) or 'site'}_{int(time.time() * 1000)}.{ext}"
    target = os.path.join(current_app.config["UPLOAD_FOLDER"], stored_name)

    try:
        os.makedirs(os.path.dirname(target), exist_ok=True)
        upload.save(target)
    except OSError as exc:
        logger.error("Failed to store upload %s: %s", stored_name, exc)
        raise StorageError(f"Error uploading file: {exc}") from exc

    logger.info("Stored upload %s (%d bytes)", stored_name, size)
    return StoredFile(
        file_name=stored_name,
        original_name=original_name,
        size=size,
        content_type=upload.mimetype,
    )


def delete_file(file_name: str | None) -> None:
    """Remove a stored file; a missing file is not an error."""
    if not file_name:
        return
    target = os.path.join(current_app.config["UPLOAD_FOLDER"], file_name)
    try:
        os.remove(target)
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning("Could not delete stored file %s: %s", file_name, exc)


# ---------------------------------------------------------------------
# Signed links
# ---------------------------------------------------------------------
def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=_SALT)


def make_file_token(file_name: str, site_id: int) -> str:
    return _serializer().dumps({"f": file_name, "s": site_id})


def read_file_token(token: str) -> Optional[dict]:
    """Payload of a valid, unexpired token, else None."""
    max_age = current_app.config.get("SIGNED_URL_MAX_AGE", 3600)
    try:
        return _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        logger.info("Expired file link used")
        return None
    except BadSignature:
        logger.warning("Invalid file link used")
        return None


def signed_url(file_name: str | None, site_id: int) -> Optional[str]:
    if not file_name:
        return None
    return url_for("inventory.view_file", token=make_file_token(file_name, site_id))
