from __future__ import annotations

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from app.backoffice.storage import Storage, UploadResult, delete_files, storage_from_config, upload_file, validate_image


def current_storage() -> Storage:
    return storage_from_config(current_app.config)


def upload_request_image(f: FileStorage | None, folder: str, storage: Storage | None = None) -> UploadResult | None:
    """
    Validate and store one image from request.files.
    Returns None when no file was submitted.
    """
    if not f or not f.filename:
        return None
    content_type = (f.mimetype or "").strip().lower()
    data = f.read()
    error = validate_image(content_type, len(data), max_mb=int(current_app.config.get("UPLOAD_MAX_MB") or 5))
    if error:
        return UploadResult(success=False, error=error)
    # split first: secure_filename("фото.png") is "png"
    base = f.filename.replace("\\", "/").rsplit("/", 1)[-1]
    stem, dot, ext = base.rpartition(".")
    filename = f"{secure_filename(stem) or 'upload'}.{ext}" if dot else (secure_filename(base) or "upload")
    return upload_file(storage or current_storage(), data, filename, content_type, folder)


def upload_request_images(files: list[FileStorage], folder: str) -> tuple[list[str], list[str]]:
    """Upload every non-empty file; returns (urls, errors)."""
    storage = current_storage()
    urls: list[str] = []
    errors: list[str] = []
    for f in files:
        result = upload_request_image(f, folder, storage)
        if result is None:
            continue
        if result.success and result.url:
            urls.append(result.url)
        else:
            errors.append(f"{f.filename}: {result.error or 'Failed to upload file'}")
    return urls, errors


def discard_uploads(urls: list[str]) -> None:
    """Remove objects uploaded for a form that was then rejected."""
    if urls:
        delete_files(current_storage(), urls)
