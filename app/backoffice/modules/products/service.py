from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.backoffice.audit import record_event
from app.backoffice.constants import PRODUCT_CATEGORIES, PRODUCT_STATUSES
from app.backoffice.models import User
from app.backoffice.modules.products.models import Product
from app.backoffice.modules.users.models import Profile
from app.backoffice.storage import Storage, delete_files, is_bucket_url
from app.backoffice.utils import (
    ActionResult,
    Page,
    clean_str,
    is_valid_url,
    is_valid_uuid,
    page_offset,
    parse_decimal,
    parse_int,
    split_lines,
)

logger = logging.getLogger(__name__)

MAX_PRICE = Decimal("999999.99")
PRODUCT_FIELDS = (
    "store_id",
    "title",
    "description",
    "category",
    "price",
    "cover_image",
    "other_images",
    "availability_count",
    "status",
)


def product_payload_from_form(form) -> dict:
    """
    Raw form -> typed payload. Only fields present in the form are included so
    an update touches exactly what was submitted. Unparseable numbers are kept
    as the raw string so validation can report them.
    """
    payload: dict[str, Any] = {}
    for key in ("store_id", "title", "category", "cover_image", "status"):
        if key in form:
            payload[key] = clean_str(form.get(key))
    if "description" in form:
        payload["description"] = clean_str(form.get("description"))
    if "price" in form:
        raw = clean_str(form.get("price"))
        price = parse_decimal(raw)
        payload["price"] = price if price is not None else raw
    if "availability_count" in form:
        raw = clean_str(form.get("availability_count"))
        count = parse_int(raw)
        payload["availability_count"] = count if count is not None else raw
    if "other_images" in form:
        payload["other_images"] = split_lines(form.get("other_images"))
    return payload


def _validate_fields(payload: dict, errors: list[str]) -> None:
    if payload.get("store_id") is not None and not is_valid_uuid(payload["store_id"]):
        errors.append("Invalid store owner ID")

    title = payload.get("title")
    if title is not None and not (3 <= len(title) <= 200):
        errors.append("Title must be between 3 and 200 characters")

    description = payload.get("description")
    if description is not None and len(description) > 2000:
        errors.append("Description must be less than 2000 characters")

    category = payload.get("category")
    if category is not None and category not in PRODUCT_CATEGORIES:
        errors.append("Invalid category")

    if "price" in payload and payload["price"] is not None:
        price = payload["price"]
        if not isinstance(price, Decimal):
            errors.append("Price must be a number")
        elif price <= 0:
            errors.append("Price must be a positive number")
        elif price > MAX_PRICE:
            errors.append("Price is too high")

    cover = payload.get("cover_image")
    if cover is not None and not is_valid_url(cover):
        errors.append("Cover image must be a valid URL")

    for url in payload.get("other_images") or []:
        if not is_valid_url(url):
            errors.append("Each image must be a valid URL")
            break

    if "availability_count" in payload and payload["availability_count"] is not None:
        count = payload["availability_count"]
        if not isinstance(count, int):
            errors.append("Availability count must be an integer")
        elif count < 0:
            errors.append("Availability count cannot be negative")

    status = payload.get("status")
    if status is not None and status not in PRODUCT_STATUSES:
        errors.append("Invalid status")


def validate_create_product_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    if not payload.get("store_id"):
        errors.append("Store owner is required")
    if not payload.get("title"):
        errors.append("Title is required")
    if not payload.get("category"):
        errors.append("Category is required")
    if payload.get("price") is None:
        errors.append("Price is required")
    if not payload.get("cover_image"):
        errors.append("Cover image is required")
    _validate_fields(payload, errors)
    return errors


def validate_update_product_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    _validate_fields(payload, errors)
    return errors


# ---------- Reads ----------


def get_products(
    s: Session,
    *,
    page: int = 1,
    limit: int = 50,
    category: str | None = None,
    status: str | None = None,
    search: str | None = None,
    store_id: str | None = None,
) -> Page[Product]:
    offset = page_offset(page, limit)
    q = s.query(Product)
    if category:
        q = q.filter(Product.category == category)
    if status:
        q = q.filter(Product.status == status)
    if store_id:
        q = q.filter(Product.store_id == store_id)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Product.title.ilike(like), Product.description.ilike(like)))

    try:
        total = q.count()
        rows = q.order_by(Product.created_at.desc(), Product.id.asc()).offset(offset).limit(limit).all()
    except SQLAlchemyError as e:
        logger.error("Error fetching products: %s", e)
        raise RuntimeError("Failed to fetch products") from e
    return Page(data=rows, count=total, limit=limit, offset=offset)


def get_product_by_id(s: Session, product_id: str) -> Product | None:
    try:
        product = s.get(Product, product_id) if product_id else None
    except SQLAlchemyError as e:
        logger.error("Error fetching product %s: %s", product_id, e)
        return None
    if product is None:
        logger.info("Product not found: %s", product_id)
    return product


def get_product_stats(s: Session, store_id: str | None = None) -> dict[str, int]:
    q = s.query(
        func.count(Product.id),
        func.sum(func.coalesce(Product.availability_count, 0)),
    )
    status_q = s.query(Product.status, func.count(Product.id)).group_by(Product.status)
    if store_id:
        q = q.filter(Product.store_id == store_id)
        status_q = status_q.filter(Product.store_id == store_id)
    total, inventory = q.one()
    by_status = {st: int(n) for st, n in status_q.all()}
    return {
        "total": int(total or 0),
        "available": by_status.get("available", 0),
        "out_of_stock": by_status.get("out_of_stock", 0),
        "total_inventory": int(inventory or 0),
    }


# ---------- Mutations ----------


def _store_exists(s: Session, store_id: str | None) -> bool:
    if not store_id:
        return False
    return s.query(Profile.id).filter(Profile.id == store_id).first() is not None


def create_product(s: Session, payload: dict, actor: User | None) -> ActionResult:
    try:
        if actor is None:
            return ActionResult.fail("Not authenticated")

        if not _store_exists(s, payload.get("store_id")):
            return ActionResult.fail("Invalid store owner selected")

        now = datetime.utcnow()
        product = Product(
            store_id=payload["store_id"],
            title=payload["title"],
            description=payload.get("description") or None,
            category=payload["category"],
            price=payload["price"],
            cover_image=payload["cover_image"],
            other_images=list(payload.get("other_images") or []),
            availability_count=payload.get("availability_count") or 0,
            status=payload.get("status") or "available",
            created_at=now,
            updated_at=now,
        )
        try:
            s.add(product)
            s.flush()
            record_event(
                s,
                actor=actor,
                action="product.create",
                entity_type="Product",
                entity_id=product.id,
                metadata={"title": product.title, "store_id": product.store_id, "price": str(product.price)},
            )
            s.commit()
        except SQLAlchemyError as e:
            s.rollback()
            logger.error("Error creating product: %s", e)
            return ActionResult.fail(str(e))
        return ActionResult.ok(product)
    except Exception:
        s.rollback()
        logger.exception("Create product error")
        return ActionResult.fail("Failed to create product")


def update_product(s: Session, product_id: str, updates: dict, actor: User | None) -> ActionResult:
    try:
        if actor is None:
            return ActionResult.fail("Not authenticated")

        product = s.get(Product, product_id) if product_id else None
        if not product:
            return ActionResult.fail("Product not found")

        if updates.get("store_id") and not _store_exists(s, updates["store_id"]):
            return ActionResult.fail("Invalid store owner selected")

        changes: dict[str, dict] = {}
        for key in PRODUCT_FIELDS:
            if key not in updates:
                continue
            value = updates[key]
            # required columns: None means "not supplied"
            if value is None and key != "description":
                continue
            if key == "other_images":
                value = list(value or [])
            old = getattr(product, key)
            if old != value:
                changes[key] = {"old": old, "new": value}
                setattr(product, key, value)
        product.updated_at = datetime.utcnow()

        try:
            s.flush()
            record_event(
                s,
                actor=actor,
                action="product.edit",
                entity_type="Product",
                entity_id=product.id,
                metadata={"title": product.title, "changes": changes},
            )
            s.commit()
        except SQLAlchemyError as e:
            s.rollback()
            logger.error("Error updating product: %s", e)
            return ActionResult.fail(str(e))
        return ActionResult.ok(product)
    except Exception:
        s.rollback()
        logger.exception("Update product error")
        return ActionResult.fail("Failed to update product")


def delete_product(s: Session, product_id: str, actor: User | None, storage: Storage | None = None) -> ActionResult:
    try:
        if actor is None:
            return ActionResult.fail("Not authenticated")

        product = s.get(Product, product_id) if product_id else None
        if not product:
            return ActionResult.fail("Product not found")

        image_urls = product.image_urls()
        try:
            s.delete(product)
            record_event(
                s,
                actor=actor,
                action="product.delete",
                entity_type="Product",
                entity_id=product_id,
                metadata={"title": product.title, "store_id": product.store_id},
            )
            s.commit()
        except SQLAlchemyError as e:
            s.rollback()
            logger.error("Error deleting product: %s", e)
            return ActionResult.fail(str(e))
    except Exception:
        s.rollback()
        logger.exception("Delete product error")
        return ActionResult.fail("Failed to delete product")

    # Row is committed; image removal failures are only logged.
    if storage is not None:
        owned = [u for u in image_urls if is_bucket_url(storage, u)]
        if owned and not delete_files(storage, owned):
            logger.warning("Product %s deleted but its images could not be removed: %s", product_id, owned)
    return ActionResult.ok()
