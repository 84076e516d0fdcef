from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.backoffice.access import require_admin
from app.backoffice.constants import PRODUCT_CATEGORIES, PRODUCT_IMAGE_FOLDER, PRODUCT_STATUSES
from app.backoffice.db import db_session
from app.backoffice.models import User
from app.backoffice.modules.products.service import (
    create_product,
    delete_product,
    get_product_by_id,
    get_product_stats,
    get_products,
    product_payload_from_form,
    update_product,
    validate_create_product_payload,
    validate_update_product_payload,
)
from app.backoffice.modules.users.service import list_store_options
from app.backoffice.uploads import current_storage, discard_uploads, upload_request_image, upload_request_images
from app.backoffice.utils import Page, parse_int_arg

bp = Blueprint("products", __name__)

PAGE_SIZE = 50


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _attach_uploaded_images(payload: dict) -> tuple[list[str], list[str]]:
    """
    Uploaded files win over typed URLs for the cover; extra files are appended
    to other_images. Returns (uploaded urls, upload error messages).
    """
    uploaded: list[str] = []
    errors: list[str] = []
    cover = upload_request_image(request.files.get("cover_image_file"), PRODUCT_IMAGE_FOLDER)
    if cover is not None:
        if cover.success and cover.url:
            payload["cover_image"] = cover.url
            uploaded.append(cover.url)
        else:
            errors.append(cover.error or "Failed to upload cover image")

    urls, upload_errors = upload_request_images(request.files.getlist("other_images_files"), PRODUCT_IMAGE_FOLDER)
    errors.extend(upload_errors)
    if urls:
        payload["other_images"] = list(payload.get("other_images") or []) + urls
        uploaded.extend(urls)
    return uploaded, errors


# ---------- List ----------
@bp.get("/products")
@require_admin
def products_list():
    s = db_session()
    page_no = parse_int_arg(request.args.get("page"), 1)
    search = (request.args.get("q") or "").strip()
    category = (request.args.get("category") or "").strip()
    status = (request.args.get("status") or "").strip()
    store_id = (request.args.get("store_id") or "").strip()

    try:
        page = get_products(
            s,
            page=page_no,
            limit=PAGE_SIZE,
            category=category or None,
            status=status or None,
            search=search or None,
            store_id=store_id or None,
        )
    except RuntimeError as e:
        flash(str(e), "danger")
        page = Page(data=[], count=0, limit=PAGE_SIZE, offset=0)

    return render_template(
        "admin/products/list.html",
        page=page,
        stats=get_product_stats(s, store_id=store_id or None),
        stores=list_store_options(s),
        categories=PRODUCT_CATEGORIES,
        statuses=PRODUCT_STATUSES,
        search=search,
        category_filter=category,
        status_filter=status,
        store_filter=store_id,
    )


# ---------- New ----------
@bp.get("/products/new")
@require_admin
def products_new_get():
    s = db_session()
    return render_template(
        "admin/products/new.html",
        stores=list_store_options(s),
        categories=PRODUCT_CATEGORIES,
        statuses=PRODUCT_STATUSES,
        selected_store=(request.args.get("store_id") or "").strip(),
    )


@bp.post("/products/new")
@require_admin
def products_new_post():
    s = db_session()
    u = _current_user()

    payload = product_payload_from_form(request.form)
    uploaded, errors = _attach_uploaded_images(payload)
    errors.extend(validate_create_product_payload(payload))
    if errors:
        discard_uploads(uploaded)
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("products.products_new_get"))

    result = create_product(s, payload, u)
    if not result.success:
        discard_uploads(uploaded)
        flash(result.error or "Failed to create product", "danger")
        return redirect(url_for("products.products_new_get"))

    flash("Product created successfully!", "success")
    return redirect(url_for("products.product_detail", product_id=result.data.id))


# ---------- Detail ----------
@bp.get("/products/<product_id>")
@require_admin
def product_detail(product_id: str):
    s = db_session()
    product = get_product_by_id(s, product_id)
    if not product:
        abort(404)
    return render_template("admin/products/detail.html", product=product)


# ---------- Edit ----------
@bp.get("/products/<product_id>/edit")
@require_admin
def product_edit_get(product_id: str):
    s = db_session()
    product = get_product_by_id(s, product_id)
    if not product:
        abort(404)
    return render_template(
        "admin/products/edit.html",
        product=product,
        stores=list_store_options(s),
        categories=PRODUCT_CATEGORIES,
        statuses=PRODUCT_STATUSES,
    )


@bp.post("/products/<product_id>/edit")
@require_admin
def product_edit_post(product_id: str):
    s = db_session()
    u = _current_user()
    if not get_product_by_id(s, product_id):
        abort(404)

    payload = product_payload_from_form(request.form)
    uploaded, errors = _attach_uploaded_images(payload)
    errors.extend(validate_update_product_payload(payload))
    if errors:
        discard_uploads(uploaded)
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("products.product_edit_get", product_id=product_id))

    result = update_product(s, product_id, payload, u)
    if not result.success:
        discard_uploads(uploaded)
        flash(result.error or "Failed to update product", "danger")
        return redirect(url_for("products.product_edit_get", product_id=product_id))

    flash("Product updated successfully!", "success")
    return redirect(url_for("products.product_detail", product_id=product_id))


# ---------- Delete ----------
@bp.post("/products/<product_id>/delete")
@require_admin
def product_delete(product_id: str):
    s = db_session()
    u = _current_user()
    result = delete_product(s, product_id, u, storage=current_storage())
    if not result.success:
        flash(result.error or "Failed to delete product", "danger")
        return redirect(url_for("products.product_detail", product_id=product_id))
    flash("Product deleted successfully!", "success")
    return redirect(url_for("products.products_list"))
