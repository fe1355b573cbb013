# services/storage.py
"""Local-disk storage for student documents under ``UPLOAD_FOLDER/<student_id>/``."""
import logging
import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from services.errors import CRMError

logger = logging.getLogger(__name__)


def allowed_extension(filename):
    if not filename or "." not in filename:
        return False
    ext = filename.rsplit(".", 1)[1].lower()
    return ext in current_app.config["ALLOWED_UPLOAD_EXTENSIONS"]


def upload_root():
    root = current_app.config["UPLOAD_FOLDER"]
    os.makedirs(root, exist_ok=True)
    return root


def save_upload(file_storage, student_id):
    """
    Validate and store an uploaded file.

    Returns ``(relative_path, original_name, mime_type, size)``.
    """
    if file_storage is None or not file_storage.filename:
        raise CRMError("No file uploaded")
    original = file_storage.filename
    if not allowed_extension(original):
        allowed = ", ".join(sorted(current_app.config["ALLOWED_UPLOAD_EXTENSIONS"]))
        raise CRMError(f"File type not allowed. Allowed: {allowed}")

    safe = secure_filename(original) or "document"
    rel = os.path.join(str(student_id), f"{uuid.uuid4().hex}_{safe}")
    abs_path = os.path.join(upload_root(), rel)
    os.makedirs(os.path.dirname(abs_path), exist_ok=True)
    file_storage.save(abs_path)

    size = os.path.getsize(abs_path)
    limit = current_app.config.get("MAX_CONTENT_LENGTH")
    if limit and size > limit:
        os.remove(abs_path)
        raise CRMError("File too large", status=413)
    if size == 0:
        os.remove(abs_path)
        raise CRMError("Uploaded file is empty")

    logger.info("stored upload %s (%d bytes)", rel, size)
    return rel.replace(os.sep, "/"), original, file_storage.mimetype, size


def absolute_path(rel_path):
    root = os.path.abspath(upload_root())
    path = os.path.abspath(os.path.join(root, rel_path))
    if not path.startswith(root + os.sep):
        raise CRMError("Invalid document path", status=400)
    return path


def delete_file(rel_path):
    """Remove a stored file; a missing file is not an error."""
    try:
        os.remove(absolute_path(rel_path))
        return True
    except FileNotFoundError:
        logger.warning("document file already missing: %s", rel_path)
        return False
