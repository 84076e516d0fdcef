"""Tests for the products module."""
import io
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.backoffice import auth, create_app
from app.backoffice.db import db_session, session_scope
from app.backoffice.identity import create_identity, find_identity_by_email
from app.backoffice.models import AuditEvent, Base
from app.backoffice.modules.products.models import Product
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
from app.backoffice.modules.users.models import Profile
from app.backoffice.storage import LocalStorage, storage_from_config, upload_file

STORE_A = "11111111-1111-4111-8111-111111111111"
STORE_B = "22222222-2222-4222-8222-222222222222"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ADMIN_EMAILS", "admin@example.com")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("STORAGE_PUBLIC_URL", "http://localhost/storage")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setattr(auth, "_login_attempts", defaultdict(list))

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        create_identity(s, email="admin@example.com", password="pw")
        now = datetime.utcnow()
        s.add_all(
            [
                Profile(id=STORE_A, name="Alpha", store_username="alpha", currency="NPR", address="A",
                        created_at=now, updated_at=now),
                Profile(id=STORE_B, name="Beta", store_username="beta", currency="USD", address="B",
                        created_at=now, updated_at=now),
            ]
        )
    return app


@pytest.fixture()
def s(app):
    with app.app_context():
        yield db_session()


@pytest.fixture()
def admin(s):
    return find_identity_by_email(s, "admin@example.com")


@pytest.fixture()
def client(app):
    c = app.test_client()
    c.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    return c


def _csrf(client) -> str:
    with client.session_transaction() as sess:
        sess.setdefault("csrf_token", "test-csrf-token")
        token = sess["csrf_token"]
    return token


def _product(**overrides):
    data = {
        "store_id": STORE_A,
        "title": "Handmade Mug",
        "description": "Stoneware mug",
        "category": "Home & Garden",
        "price": Decimal("12.50"),
        "cover_image": "https://cdn.example.com/mug.jpg",
    }
    data.update(overrides)
    return data


def _seed(s, admin, count, **overrides):
    base = datetime.utcnow() - timedelta(hours=count)
    ids = []
    for i in range(count):
        result = create_product(s, _product(title=f"Item {i:02d}", **overrides), admin)
        assert result.success, result.error
        result.data.created_at = base + timedelta(minutes=i)
        ids.append(result.data.id)
    s.commit()
    return ids


# ---------- Validation ----------


def test_validate_create_product_ok():
    assert validate_create_product_payload(_product()) == []


def test_validate_create_product_errors():
    errors = validate_create_product_payload(
        _product(
            store_id="not-a-uuid",
            title="ab",
            category="Weapons",
            price=Decimal("0"),
            cover_image="ftp://x",
            other_images=["notaurl"],
            availability_count=-1,
            status="gone",
        )
    )
    assert "Invalid store owner ID" in errors
    assert "Title must be between 3 and 200 characters" in errors
    assert "Invalid category" in errors
    assert "Price must be a positive number" in errors
    assert "Cover image must be a valid URL" in errors
    assert "Each image must be a valid URL" in errors
    assert "Availability count cannot be negative" in errors
    assert "Invalid status" in errors


def test_validate_price_bounds_and_required():
    assert "Price is too high" in validate_create_product_payload(_product(price=Decimal("1000000")))
    errors = validate_create_product_payload({})
    for msg in ("Store owner is required", "Title is required", "Category is required",
                "Price is required", "Cover image is required"):
        assert msg in errors


def test_validate_update_all_optional():
    assert validate_update_product_payload({}) == []
    assert validate_update_product_payload({"price": "abc"}) == ["Price must be a number"]


def test_payload_from_form_parses_types():
    payload = product_payload_from_form(
        {
            "title": "  Lamp ",
            "price": "19.99",
            "availability_count": "3",
            "other_images": "https://a/1.jpg\n\n https://a/2.jpg ",
        }
    )
    assert payload == {
        "title": "Lamp",
        "price": Decimal("19.99"),
        "availability_count": 3,
        "other_images": ["https://a/1.jpg", "https://a/2.jpg"],
    }


# ---------- Create / read ----------


def test_create_product_defaults(s, admin):
    result = create_product(s, _product(), admin)
    assert result.success, result.error
    p = get_product_by_id(s, result.data.id)
    assert p.other_images == []
    assert p.availability_count == 0
    assert p.status == "available"
    assert p.store.store_username == "alpha"
    assert s.query(AuditEvent).filter(AuditEvent.action == "product.create").count() == 1


def test_create_product_requires_actor(s):
    result = create_product(s, _product(), None)
    assert not result.success
    assert result.error == "Not authenticated"


def test_create_product_unknown_store(s, admin):
    result = create_product(s, _product(store_id="33333333-3333-4333-8333-333333333333"), admin)
    assert not result.success
    assert result.error == "Invalid store owner selected"


def test_get_products_pagination_and_order(s, admin):
    ids = _seed(s, admin, 5)

    page1 = get_products(s, page=1, limit=2)
    page3 = get_products(s, page=3, limit=2)
    assert page1.count == 5
    assert [p.id for p in page1.data] == [ids[4], ids[3]]
    assert [p.id for p in page3.data] == [ids[0]]
    assert page1.offset == 0 and page3.offset == 4


def test_get_products_filters(s, admin):
    _seed(s, admin, 2)
    create_product(s, _product(store_id=STORE_B, title="Desk Chair", description="Oak", category="Furniture",
                               status="out_of_stock"), admin)

    assert get_products(s, category="Furniture").count == 1
    assert get_products(s, status="out_of_stock").count == 1
    assert get_products(s, store_id=STORE_A).count == 2
    assert get_products(s, search="oak").data[0].title == "Desk Chair"
    assert get_products(s, search="STONEWARE").count == 2


def test_get_product_stats(s, admin):
    create_product(s, _product(availability_count=4), admin)
    create_product(s, _product(availability_count=6), admin)
    create_product(s, _product(store_id=STORE_B, status="out_of_stock"), admin)

    assert get_product_stats(s) == {"total": 3, "available": 2, "out_of_stock": 1, "total_inventory": 10}
    assert get_product_stats(s, store_id=STORE_B) == {
        "total": 1,
        "available": 0,
        "out_of_stock": 1,
        "total_inventory": 0,
    }


def test_get_product_by_id_missing(s):
    assert get_product_by_id(s, "nope") is None


# ---------- Update / delete ----------


def test_update_product_only_supplied_fields(s, admin):
    pid = create_product(s, _product(), admin).data.id

    result = update_product(s, pid, {"price": Decimal("15.00"), "status": "out_of_stock"}, admin)
    assert result.success, result.error
    p = get_product_by_id(s, pid)
    assert p.price == Decimal("15.00")
    assert p.status == "out_of_stock"
    assert p.title == "Handmade Mug"


def test_update_product_errors(s, admin):
    pid = create_product(s, _product(), admin).data.id
    assert update_product(s, "nope", {"title": "x"}, admin).error == "Product not found"
    assert update_product(s, pid, {"store_id": "33333333-3333-4333-8333-333333333333"}, admin).error == (
        "Invalid store owner selected"
    )
    assert update_product(s, pid, {"title": "x"}, None).error == "Not authenticated"


def test_delete_product_removes_bucket_images(app, s, admin):
    storage = storage_from_config(app.config)
    cover = upload_file(storage, b"img", "cover.png", "image/png", "products")
    assert cover.success
    key = cover.url.split("/products/", 1)[1]
    assert storage.exists(key)

    pid = create_product(
        s,
        _product(cover_image=cover.url, other_images=["https://elsewhere.example.com/x.jpg"]),
        admin,
    ).data.id

    result = delete_product(s, pid, admin, storage=storage)
    assert result.success
    assert get_product_by_id(s, pid) is None
    assert not storage.exists(key)


def test_delete_product_succeeds_when_image_cleanup_fails(app, s, admin, monkeypatch):
    storage = storage_from_config(app.config)
    cover = upload_file(storage, b"img", "cover.png", "image/png", "products")
    pid = create_product(s, _product(cover_image=cover.url), admin).data.id

    def unreachable(self, keys):
        raise OSError("connection refused")

    monkeypatch.setattr(LocalStorage, "remove", unreachable)
    result = delete_product(s, pid, admin, storage=storage)
    assert result.success, result.error
    assert s.get(Product, pid) is None


def test_delete_product_not_found(s, admin):
    result = delete_product(s, "nope", admin)
    assert not result.success
    assert result.error == "Product not found"


def test_deleting_store_cascades_to_products(s, admin):
    create_product(s, _product(), admin)
    s.delete(s.get(Profile, STORE_A))
    s.commit()
    assert s.query(Product).count() == 0


# ---------- Routes ----------


def test_products_list_page(client):
    r = client.get("/admin/products")
    assert r.status_code == 200
    assert b"Products" in r.data
    assert b"Showing" in r.data


def test_products_create_with_uploaded_cover(client, app):
    r = client.post(
        "/admin/products/new",
        data={
            "store_id": STORE_B,
            "title": "Poster",
            "category": "Other",
            "price": "9.99",
            "availability_count": "2",
            "status": "available",
            "cover_image": "",
            "other_images": "",
            "cover_image_file": (io.BytesIO(b"\x89PNG fake"), "poster.png", "image/png"),
            "csrf_token": _csrf(client),
        },
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Product created successfully!" in r.data
    assert b"$9.99" in r.data

    with session_scope(app) as s:
        p = s.query(Product).filter(Product.title == "Poster").one()
        assert p.cover_image.startswith("http://localhost/storage/products/products/")


def test_products_create_rejects_non_image_upload(client):
    r = client.post(
        "/admin/products/new",
        data={
            "store_id": STORE_A,
            "title": "Poster",
            "category": "Other",
            "price": "9.99",
            "cover_image_file": (io.BytesIO(b"%PDF"), "doc.pdf", "application/pdf"),
            "csrf_token": _csrf(client),
        },
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert b"Only JPEG, PNG, GIF and WebP images are allowed." in r.data


def test_products_edit_and_delete_routes(client, app):
    with app.app_context():
        s = db_session()
        admin = find_identity_by_email(s, "admin@example.com")
        pid = create_product(s, _product(), admin).data.id

    r = client.get(f"/admin/products/{pid}")
    assert r.status_code == 200
    assert "Rs. 12.50" in r.get_data(as_text=True)

    r = client.post(
        f"/admin/products/{pid}/edit",
        data={"title": "Renamed Mug", "csrf_token": _csrf(client)},
        follow_redirects=True,
    )
    assert b"Product updated successfully!" in r.data
    assert b"Renamed Mug" in r.data

    r = client.post(f"/admin/products/{pid}/delete", data={"csrf_token": _csrf(client)}, follow_redirects=True)
    assert b"Product deleted successfully!" in r.data
    assert client.get(f"/admin/products/{pid}").status_code == 404


def test_products_create_invalid_form_discards_uploads(client, tmp_path):
    r = client.post(
        "/admin/products/new",
        data={
            "store_id": STORE_A,
            "title": "Poster",
            "category": "Other",
            "price": "0",
            "cover_image_file": (io.BytesIO(b"\x89PNG fake"), "poster.png", "image/png"),
            "other_images_files": (io.BytesIO(b"GIF89a"), "extra.gif", "image/gif"),
            "csrf_token": _csrf(client),
        },
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Product created successfully!" not in r.data
    uploaded = tmp_path / "storage" / "products" / "products"
    assert uploaded.is_dir()
    assert not any(uploaded.iterdir())
