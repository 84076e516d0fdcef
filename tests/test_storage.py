import io
from collections import defaultdict

import pytest
from botocore.exceptions import EndpointConnectionError, NoCredentialsError
from werkzeug.datastructures import FileStorage

from app.backoffice import auth, create_app
from app.backoffice.db import session_scope
from app.backoffice.identity import create_identity
from app.backoffice.models import Base
from app.backoffice.storage import (
    BucketNotFoundError,
    LocalStorage,
    S3Storage,
    StorageError,
    UploadFile,
    build_object_key,
    delete_file,
    delete_files,
    key_from_public_url,
    random_object_name,
    storage_from_config,
    upload_file,
    upload_files,
    validate_image,
)
from app.backoffice.uploads import upload_request_image


@pytest.fixture()
def storage(tmp_path):
    return LocalStorage(root=tmp_path, bucket="products", public_base_url="https://cdn.example.com/storage/v1/object/public")


def test_random_object_name_shape():
    name = random_object_name("Photo.JPG", now_ms=1700000000000)
    stamp, rest = name.split("-", 1)
    token, ext = rest.split(".")
    assert stamp == "1700000000000"
    assert len(token) == 7 and token.isalnum()
    assert ext == "jpg"


def test_build_object_key_with_folder():
    assert build_object_key("a.png", "profiles").startswith("profiles/")
    assert "/" not in build_object_key("a.png")


def test_validate_image():
    assert validate_image("image/png", 1024) is None
    assert validate_image("image/jpg", 1024) is None
    assert validate_image("application/pdf", 10) == "Only JPEG, PNG, GIF and WebP images are allowed."
    assert validate_image("image/png", 6 * 1024 * 1024) == "Image must be 5MB or smaller."


def test_upload_and_public_url(storage):
    result = upload_file(storage, b"data", "cat.png", "image/png", "products")
    assert result.success
    assert result.url.startswith("https://cdn.example.com/storage/v1/object/public/products/products/")
    assert result.url.endswith(".png")
    key = key_from_public_url(storage, result.url)
    assert storage.exists(key)
    assert result.to_dict() == {"success": True, "url": result.url}


def test_upload_never_overwrites(storage, monkeypatch):
    monkeypatch.setattr("app.backoffice.storage.build_object_key", lambda filename, folder=None: "fixed.png")
    assert upload_file(storage, b"1", "a.png", "image/png").success
    second = upload_file(storage, b"2", "a.png", "image/png")
    assert not second.success
    assert "already exists" in second.error
    with storage.open("fixed.png") as f:
        assert f.read() == b"1"


def test_upload_missing_bucket_message(storage, monkeypatch):
    def missing(*args, **kwargs):
        raise BucketNotFoundError("nope")

    monkeypatch.setattr(LocalStorage, "put_bytes", missing)
    result = upload_file(storage, b"x", "a.png", "image/png")
    assert not result.success
    assert result.error == 'Bucket "products" does not exist. Please create it in the storage console.'


def test_upload_files_batch(storage):
    results = upload_files(
        storage,
        [UploadFile("a.png", b"a", "image/png"), UploadFile("b.gif", b"b", "image/gif")],
        folder="products",
    )
    assert [r.success for r in results] == [True, True]
    assert len({r.url for r in results}) == 2


def test_key_from_public_url(storage):
    assert key_from_public_url(storage, "https://x/storage/products/products/1-abc.png") == "products/1-abc.png"
    assert key_from_public_url(storage, "https://x/other-bucket/1.png") is None
    assert key_from_public_url(storage, "not a url") is None


def test_delete_file_and_files(storage):
    a = upload_file(storage, b"a", "a.png", "image/png", "products").url
    b = upload_file(storage, b"b", "b.png", "image/png", "products").url

    assert delete_file(storage, a)
    assert not storage.exists(key_from_public_url(storage, a))
    assert not delete_file(storage, "https://x/unrelated/path.png")

    assert delete_files(storage, [b, "https://x/unrelated/path.png"])
    assert not storage.exists(key_from_public_url(storage, b))
    assert not delete_files(storage, ["https://x/unrelated/path.png"])
    assert not delete_files(storage, [])


def test_delete_backend_failure_returns_false(storage, monkeypatch):
    def broken(*args, **kwargs):
        raise StorageError("backend down")

    monkeypatch.setattr(LocalStorage, "remove", broken)
    assert not delete_file(storage, "https://x/products/products/1.png")
    assert not delete_files(storage, ["https://x/products/products/1.png"])


def test_delete_local_os_error_returns_false(storage, monkeypatch):
    url = upload_file(storage, b"a", "a.png", "image/png", "products").url

    def locked(self, missing_ok=False):
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr("pathlib.Path.unlink", locked)
    assert not delete_file(storage, url)
    assert not delete_files(storage, [url])


class _UnreachableS3:
    def __init__(self, exc):
        self.exc = exc

    def delete_objects(self, **kwargs):
        raise self.exc


@pytest.mark.parametrize(
    "exc",
    [
        EndpointConnectionError(endpoint_url="https://127.0.0.1:1"),
        NoCredentialsError(),
        ValueError("unexpected"),
    ],
)
def test_delete_s3_backend_errors_return_false(monkeypatch, exc):
    s3 = S3Storage(
        endpoint="127.0.0.1:1",
        region="",
        bucket="products",
        access_key_id="k",
        secret_access_key="s",
        public_base_url="https://127.0.0.1:1",
    )
    monkeypatch.setattr(S3Storage, "_client", lambda self: _UnreachableS3(exc))
    url = "https://127.0.0.1:1/products/products/a.png"
    assert not delete_file(s3, url)
    assert not delete_files(s3, [url])


def test_local_storage_rejects_traversal(storage):
    with pytest.raises(StorageError):
        storage.put_bytes("../escape.txt", b"x")


def test_storage_from_config_local(tmp_path):
    st = storage_from_config(
        {"STORAGE_BACKEND": "local", "STORAGE_LOCAL_ROOT": str(tmp_path), "STORAGE_BUCKET": "media"}
    )
    assert isinstance(st, LocalStorage)
    assert st.public_url("x/y.png") == "http://127.0.0.1:5000/storage/media/x/y.png"


# ---------- HTTP ----------


@pytest.fixture()
def client(tmp_path, monkeypatch):
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

    c = app.test_client()
    c.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    return c


def _csrf(client) -> str:
    with client.session_transaction() as sess:
        sess.setdefault("csrf_token", "test-csrf-token")
        token = sess["csrf_token"]
    return token


def test_upload_endpoint_and_local_serving(client):
    r = client.post(
        "/admin/uploads",
        data={"file": (io.BytesIO(b"GIF89a"), "dot.gif", "image/gif"), "folder": "profiles"},
        headers={"X-CSRF-Token": _csrf(client)},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["success"] is True
    url = r.json["url"]
    assert url.startswith("http://localhost/storage/products/profiles/")

    path = url.replace("http://localhost", "")
    served = client.get(path)
    assert served.status_code == 200
    assert served.data == b"GIF89a"
    assert served.headers["Cache-Control"] == "public, max-age=3600"


def test_upload_endpoint_errors(client):
    headers = {"X-CSRF-Token": _csrf(client)}
    r = client.post("/admin/uploads", data={}, headers=headers)
    assert r.status_code == 400
    assert r.json == {"success": False, "error": "No file uploaded"}

    r = client.post(
        "/admin/uploads",
        data={"file": (io.BytesIO(b"x"), "a.txt", "text/plain")},
        headers=headers,
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert r.json["success"] is False

    r = client.post(
        "/admin/uploads",
        data={"file": (io.BytesIO(b"x"), "a.png", "image/png"), "folder": "../etc"},
        headers=headers,
        content_type="multipart/form-data",
    )
    assert r.json == {"success": False, "error": "Invalid folder"}


def test_storage_route_404s(client):
    assert client.get("/storage/products/missing.png").status_code == 404
    assert client.get("/storage/other/missing.png").status_code == 404


def test_upload_keeps_extension_of_non_ascii_filename(client):
    f = FileStorage(stream=io.BytesIO(b"\x89PNG"), filename="фото.png", content_type="image/png")
    with client.application.test_request_context():
        result = upload_request_image(f, "products")
    assert result.success
    assert result.url.endswith(".png")


def test_random_object_name_ascii_extension():
    assert random_object_name("a.пнг", now_ms=1).endswith(".bin")
    assert random_object_name("noext", now_ms=1).endswith(".bin")
