from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.backoffice.audit import record_event
from app.backoffice.constants import ORDER_STATUSES, SHIPPING_ADDRESS_FIELDS
from app.backoffice.models import User
from app.backoffice.modules.orders.models import Order
from app.backoffice.utils import ActionResult, Page, clean_str, is_valid_email, page_offset

logger = logging.getLogger(__name__)

# Admins may only touch these; everything else on an order is buyer/payment data.
UPDATABLE_FIELDS = ("status", "shipping_address", "buyer_name", "buyer_email")


def order_payload_from_form(form) -> dict:
    payload: dict[str, Any] = {}
    for key in ("status", "buyer_name", "buyer_email"):
        if key in form:
            payload[key] = clean_str(form.get(key))
    address_keys = [f"shipping_{f}" for f in SHIPPING_ADDRESS_FIELDS]
    if any(k in form for k in address_keys):
        payload["shipping_address"] = {
            f: (clean_str(form.get(f"shipping_{f}")) or "") for f in SHIPPING_ADDRESS_FIELDS
        }
    return payload


def validate_update_order_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    status = payload.get("status")
    if status is not None and status not in ORDER_STATUSES:
        errors.append("Invalid status")

    address = payload.get("shipping_address")
    if address is not None:
        labels = {
            "street": "Street",
            "city": "City",
            "state": "State",
            "country": "Country",
            "postal_code": "Postal code",
        }
        for f in SHIPPING_ADDRESS_FIELDS:
            if not (address.get(f) or "").strip():
                errors.append(f"{labels[f]} is required")

    email = payload.get("buyer_email")
    if email is not None and not is_valid_email(email):
        errors.append("Invalid email")
    return errors


# ---------- Reads ----------


def get_orders(
    s: Session,
    *,
    page: int = 1,
    limit: int = 50,
    status: str | None = None,
    seller_id: str | None = None,
    search: str | None = None,
) -> Page[Order]:
    offset = page_offset(page, limit)
    q = s.query(Order)
    if status:
        q = q.filter(Order.status == status)
    if seller_id:
        q = q.filter(Order.seller_id == seller_id)
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Order.order_code.ilike(like),
                Order.buyer_name.ilike(like),
                Order.buyer_email.ilike(like),
                Order.transaction_code.ilike(like),
            )
        )
    try:
        total = q.count()
        rows = q.order_by(Order.created_at.desc(), Order.id.asc()).offset(offset).limit(limit).all()
    except SQLAlchemyError as e:
        logger.error("Error fetching orders: %s", e)
        raise RuntimeError("Failed to fetch orders") from e
    return Page(data=rows, count=total, limit=limit, offset=offset)


def get_order_by_id(s: Session, order_id: str) -> Order | None:
    try:
        order = s.get(Order, order_id) if order_id else None
    except SQLAlchemyError as e:
        logger.error("Error fetching order %s: %s", order_id, e)
        return None
    if order is None:
        logger.info("Order not found: %s", order_id)
    return order


def get_order_stats(s: Session, seller_id: str | None = None) -> dict[str, Any]:
    status_q = s.query(Order.status, func.count(Order.id)).group_by(Order.status)
    revenue_q = s.query(func.count(Order.id), func.sum(Order.amount))
    if seller_id:
        status_q = status_q.filter(Order.seller_id == seller_id)
        revenue_q = revenue_q.filter(Order.seller_id == seller_id)
    by_status = {st: int(n) for st, n in status_q.all()}
    total, revenue = revenue_q.one()
    stats: dict[str, Any] = {"total": int(total or 0)}
    for st in ORDER_STATUSES:
        stats[st] = by_status.get(st, 0)
    stats["total_revenue"] = Decimal(str(revenue)) if revenue is not None else Decimal("0")
    return stats


# ---------- Mutations ----------


def update_order(s: Session, order_id: str, updates: dict, actor: User | None) -> ActionResult:
    try:
        if actor is None:
            return ActionResult.fail("Not authenticated")

        order = s.get(Order, order_id) if order_id else None
        if not order:
            return ActionResult.fail("Order not found")

        changes: dict[str, dict] = {}
        for key in UPDATABLE_FIELDS:
            value = updates.get(key)
            if value is None:
                continue
            if key == "shipping_address":
                value = {f: value.get(f, "") for f in SHIPPING_ADDRESS_FIELDS}
            old = getattr(order, key)
            if old != value:
                changes[key] = {"old": old, "new": value}
                setattr(order, key, value)
        order.updated_at = datetime.utcnow()

        try:
            s.flush()
            record_event(
                s,
                actor=actor,
                action="order.edit",
                entity_type="Order",
                entity_id=order.id,
                metadata={"order_code": order.order_code, "changes": changes},
            )
            s.commit()
        except SQLAlchemyError as e:
            s.rollback()
            logger.error("Error updating order: %s", e)
            return ActionResult.fail(str(e))
        return ActionResult.ok(order)
    except Exception:
        s.rollback()
        logger.exception("Update order error")
        return ActionResult.fail("Failed to update order")
