from __future__ import annotations

from flask import Blueprint, abort, flash, g, jsonify, redirect, render_template, request, url_for

from app.backoffice.access import require_admin
from app.backoffice.constants import CURRENCIES, PROFILE_IMAGE_FOLDER
from app.backoffice.db import db_session
from app.backoffice.models import User
from app.backoffice.modules.products.service import get_product_stats, get_products
from app.backoffice.modules.users.service import (
    check_username_availability,
    create_user,
    delete_user,
    get_user_by_id,
    get_users,
    search_profiles,
    update_user,
    user_payload_from_form,
    validate_create_user_payload,
    validate_update_user_payload,
)
from app.backoffice.uploads import discard_uploads, upload_request_image
from app.backoffice.utils import parse_int_arg

bp = Blueprint("users", __name__)

DEFAULT_LIMIT = 10


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _attach_profile_image(payload: dict, uploaded: list[str]) -> str | None:
    """Uploads `profile_image_file` if present; returns an error message on failure."""
    result = upload_request_image(request.files.get("profile_image_file"), PROFILE_IMAGE_FOLDER)
    if result is None:
        return None
    if not result.success or not result.url:
        return result.error or "Failed to upload image"
    payload["profile_image"] = result.url
    uploaded.append(result.url)
    return None


# ---------- List ----------
@bp.get("/users")
@require_admin
def users_list():
    s = db_session()
    limit = parse_int_arg(request.args.get("limit"), DEFAULT_LIMIT, maximum=100)
    offset = parse_int_arg(request.args.get("offset"), 0, minimum=0)
    page = get_users(s, limit=limit, offset=offset)
    return render_template("admin/users/list.html", page=page, limit=limit, offset=offset)


# ---------- New ----------
@bp.get("/users/new")
@require_admin
def users_new_get():
    return render_template("admin/users/new.html", currencies=CURRENCIES)


@bp.post("/users/new")
@require_admin
def users_new_post():
    s = db_session()
    u = _current_user()

    payload = user_payload_from_form(request.form)
    uploaded: list[str] = []
    upload_error = _attach_profile_image(payload, uploaded)
    if upload_error:
        flash(upload_error, "danger")
        return redirect(url_for("users.users_new_get"))

    errors = validate_create_user_payload(payload)
    if errors:
        discard_uploads(uploaded)
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("users.users_new_get"))

    result = create_user(s, payload, u)
    if not result.success:
        discard_uploads(uploaded)
        flash(result.error or "Failed to create user", "danger")
        return redirect(url_for("users.users_new_get"))

    flash("User created successfully!", "success")
    return redirect(url_for("users.users_list"))


# ---------- Detail ----------
@bp.get("/users/<user_id>/details")
@require_admin
def user_detail(user_id: str):
    s = db_session()
    user = get_user_by_id(s, user_id)
    if not user:
        abort(404)
    stats = get_product_stats(s, store_id=user.id)
    recent = get_products(s, page=1, limit=5, store_id=user.id)
    return render_template("admin/users/detail.html", user=user, stats=stats, recent_products=recent.data)


# ---------- Edit ----------
@bp.get("/users/<user_id>/edit")
@require_admin
def user_edit_get(user_id: str):
    s = db_session()
    user = get_user_by_id(s, user_id)
    if not user:
        abort(404)
    return render_template("admin/users/edit.html", user=user, currencies=CURRENCIES)


@bp.post("/users/<user_id>/edit")
@require_admin
def user_edit_post(user_id: str):
    s = db_session()
    u = _current_user()
    if not get_user_by_id(s, user_id):
        abort(404)

    payload = user_payload_from_form(request.form)
    payload.pop("password", None)
    uploaded: list[str] = []
    upload_error = _attach_profile_image(payload, uploaded)
    if upload_error:
        flash(upload_error, "danger")
        return redirect(url_for("users.user_edit_get", user_id=user_id))

    errors = validate_update_user_payload(payload)
    if errors:
        discard_uploads(uploaded)
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("users.user_edit_get", user_id=user_id))

    result = update_user(s, user_id, payload, u)
    if not result.success:
        discard_uploads(uploaded)
        flash(result.error or "Failed to update user", "danger")
        return redirect(url_for("users.user_edit_get", user_id=user_id))

    flash("User updated successfully!", "success")
    return redirect(url_for("users.user_detail", user_id=user_id))


# ---------- Delete ----------
@bp.post("/users/<user_id>/delete")
@require_admin
def user_delete(user_id: str):
    s = db_session()
    u = _current_user()
    result = delete_user(s, user_id, u)
    if not result.success:
        flash(result.error or "Failed to delete user", "danger")
        return redirect(url_for("users.users_list"))
    flash("User deleted successfully!", "success")
    return redirect(url_for("users.users_list"))


# ---------- JSON ----------
@bp.get("/users/check-username")
@require_admin
def users_check_username():
    username = (request.args.get("username") or "").strip()
    if not username:
        return jsonify({"available": False, "error": "username is required"}), 400
    return jsonify(check_username_availability(db_session(), username))


@bp.get("/users/search")
@require_admin
def users_search():
    q = (request.args.get("q") or "").strip()
    if not q:
        return jsonify({"results": []})
    profiles = search_profiles(db_session(), q, limit=10)
    return jsonify(
        {
            "results": [
                {**p.store_summary(), "profile_image": p.profile_image}
                for p in profiles
            ]
        }
    )
