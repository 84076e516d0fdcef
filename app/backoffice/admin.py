from datetime import date, datetime, time, timedelta

from flask import Blueprint, current_app, flash, jsonify, render_template, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.backoffice.access import require_admin
from app.backoffice.constants import PRODUCT_IMAGE_FOLDER, PROFILE_IMAGE_FOLDER
from app.backoffice.db import db_session
from app.backoffice.models import AuditEvent
from app.backoffice.modules.orders.models import Order
from app.backoffice.modules.orders.service import get_order_stats
from app.backoffice.modules.products.service import get_product_stats
from app.backoffice.modules.users.service import count_users
from app.backoffice.uploads import upload_request_image

bp = Blueprint("admin", __name__)

UPLOAD_FOLDERS = (PRODUCT_IMAGE_FOLDER, PROFILE_IMAGE_FOLDER)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _system_status(s) -> dict:
    cfg = current_app.config
    status = {
        "env": (cfg.get("ENV") or "development").strip().lower(),
        "db_connected": False,
        "db_error": None,
        "storage_backend": (cfg.get("STORAGE_BACKEND") or "local"),
        "storage_bucket": cfg.get("STORAGE_BUCKET"),
        "storage_configured": False,
        "storage_error": None,
    }

    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except SQLAlchemyError as e:
        s.rollback()
        status["db_error"] = str(e)

    # Config only; no network calls from the dashboard.
    if status["storage_backend"] == "s3":
        missing = [k for k in ("S3_ENDPOINT", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not cfg.get(k)]
        status["storage_configured"] = not missing
        if missing:
            status["storage_error"] = f"Missing: {', '.join(missing)}"
    else:
        status["storage_configured"] = True
    return status


@bp.get("/")
@require_admin
def index():
    s = db_session()
    status = _system_status(s)
    counts = {"users": 0, "products": 0, "orders": 0}
    product_stats: dict = {}
    order_stats: dict = {}
    recent_orders: list[Order] = []
    if status["db_connected"]:
        product_stats = get_product_stats(s)
        order_stats = get_order_stats(s)
        counts = {
            "users": count_users(s),
            "products": product_stats["total"],
            "orders": order_stats["total"],
        }
        recent_orders = s.query(Order).order_by(Order.created_at.desc()).limit(5).all()
    return render_template(
        "admin/index.html",
        counts=counts,
        product_stats=product_stats,
        order_stats=order_stats,
        recent_orders=recent_orders,
        system_status=status,
    )


@bp.get("/audit")
@require_admin
def audit_list():
    """
    Last 200 audit events, filterable by action, actor email and date range (YYYY-MM-DD).
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end date
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )


@bp.post("/uploads")
@require_admin
def uploads_create():
    """Single image upload for forms that post images ahead of the record."""
    folder = (request.form.get("folder") or PRODUCT_IMAGE_FOLDER).strip().strip("/")
    if folder not in UPLOAD_FOLDERS:
        return jsonify({"success": False, "error": "Invalid folder"}), 400

    result = upload_request_image(request.files.get("file"), folder)
    if result is None:
        return jsonify({"success": False, "error": "No file uploaded"}), 400
    return jsonify(result.to_dict()), (200 if result.success else 400)
