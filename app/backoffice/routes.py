from flask import Blueprint, abort, current_app, redirect, send_file, url_for

from app.backoffice.storage import LocalStorage, StorageError, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return redirect(url_for("admin.index"))


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """Liveness probe. No DB access."""
    return "ok", 200


@bp.get("/storage/<bucket>/<path:key>")
def storage_object(bucket: str, key: str):
    """Public reads for the local backend; S3 objects are served by the bucket itself."""
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage) or bucket != storage.bucket:
        abort(404)
    try:
        if not storage.exists(key):
            abort(404)
        fobj = storage.open(key)
    except StorageError:
        abort(404)
    response = send_file(fobj, download_name=key.rsplit("/", 1)[-1], conditional=False)
    response.headers["Cache-Control"] = "public, max-age=3600"
    return response
