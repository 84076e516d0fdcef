from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.backoffice.access import require_admin
from app.backoffice.constants import ORDER_STATUSES, SHIPPING_ADDRESS_FIELDS
from app.backoffice.db import db_session
from app.backoffice.models import User
from app.backoffice.modules.orders.service import (
    get_order_by_id,
    get_order_stats,
    get_orders,
    order_payload_from_form,
    update_order,
    validate_update_order_payload,
)
from app.backoffice.modules.users.service import list_store_options
from app.backoffice.utils import Page, parse_int_arg

bp = Blueprint("orders", __name__)

PAGE_SIZE = 50


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- List ----------
@bp.get("/orders")
@require_admin
def orders_list():
    s = db_session()
    page_no = parse_int_arg(request.args.get("page"), 1)
    search = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()
    seller_id = (request.args.get("seller_id") or "").strip()

    try:
        page = get_orders(
            s,
            page=page_no,
            limit=PAGE_SIZE,
            status=status or None,
            seller_id=seller_id or None,
            search=search or None,
        )
    except RuntimeError as e:
        flash(str(e), "danger")
        page = Page(data=[], count=0, limit=PAGE_SIZE, offset=0)

    return render_template(
        "admin/orders/list.html",
        page=page,
        stats=get_order_stats(s, seller_id=seller_id or None),
        sellers=list_store_options(s),
        statuses=ORDER_STATUSES,
        search=search,
        status_filter=status,
        seller_filter=seller_id,
    )


# ---------- Detail ----------
@bp.get("/orders/<order_id>")
@require_admin
def order_detail(order_id: str):
    s = db_session()
    order = get_order_by_id(s, order_id)
    if not order:
        abort(404)
    return render_template("admin/orders/detail.html", order=order, address_fields=SHIPPING_ADDRESS_FIELDS)


# ---------- Edit ----------
@bp.get("/orders/<order_id>/edit")
@require_admin
def order_edit_get(order_id: str):
    s = db_session()
    order = get_order_by_id(s, order_id)
    if not order:
        abort(404)
    return render_template(
        "admin/orders/edit.html",
        order=order,
        statuses=ORDER_STATUSES,
        address_fields=SHIPPING_ADDRESS_FIELDS,
    )


@bp.post("/orders/<order_id>/edit")
@require_admin
def order_edit_post(order_id: str):
    s = db_session()
    u = _current_user()
    if not get_order_by_id(s, order_id):
        abort(404)

    payload = order_payload_from_form(request.form)
    errors = validate_update_order_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("orders.order_edit_get", order_id=order_id))

    result = update_order(s, order_id, payload, u)
    if not result.success:
        flash(result.error or "Failed to update order", "danger")
        return redirect(url_for("orders.order_edit_get", order_id=order_id))

    flash("Order updated successfully!", "success")
    return redirect(url_for("orders.order_detail", order_id=order_id))
