from collections import defaultdict

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from app.backoffice import auth, create_app
from app.backoffice.db import session_scope
from app.backoffice.identity import create_identity
from app.backoffice.models import Base, User
from scripts import init_db
from scripts.start import gunicorn_argv, resolve_port


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ADMIN_EMAILS", "admin@example.com")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    monkeypatch.setattr(auth, "_login_attempts", defaultdict(list))

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        create_identity(s, email="admin@example.com", password="pw")

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_root_redirects_to_admin(client):
    r = client.get("/", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/")


def test_admin_requires_login(client):
    r = client.get("/admin/", follow_redirects=False)
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]


def test_login_page_renders(client):
    r = client.get("/auth/login")
    assert r.status_code == 200
    assert b"Admin sign in" in r.data


def test_dashboard_after_login(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.get("/admin/")
    assert r.status_code == 200
    assert b"Dashboard" in r.data
    assert b"System status" in r.data
    assert b"Connected" in r.data


def test_unknown_page_404(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.get("/admin/products/does-not-exist")
    assert r.status_code == 404
    assert b"Not found" in r.data


def test_post_without_csrf_rejected(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.post("/admin/uploads", data={})
    assert r.status_code == 400
    assert b"CSRF" in r.data


def test_production_requires_postgres(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "a-strong-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app()


def test_resolve_port():
    assert resolve_port(None) == 8080
    assert resolve_port(" 5001 ") == 5001
    with pytest.raises(ValueError):
        resolve_port("0")
    with pytest.raises(ValueError):
        resolve_port("http")


def test_gunicorn_argv_reads_worker_settings():
    argv = gunicorn_argv(9000, {"WEB_CONCURRENCY": "4"})
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:9000"
    assert argv[argv.index("--workers") + 1] == "4"
    assert argv[argv.index("--timeout") + 1] == "60"


def test_seed_admin_is_idempotent(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'seed.db'}"
    engine = create_engine(db_url)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setenv("ADMIN_EMAIL", "Owner@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "first-password")
    monkeypatch.setenv("ADMIN_EMAILS", "owner@example.com")

    init_db.seed_only(database_url=db_url)
    monkeypatch.setenv("ADMIN_PASSWORD", "second-password")
    init_db.seed_only(database_url=db_url)

    with Session(engine) as s:
        users = s.query(User).all()
    assert [u.email for u in users] == ["owner@example.com"]
    engine.dispose()
