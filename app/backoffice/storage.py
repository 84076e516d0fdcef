from __future__ import annotations

import logging
import secrets
import string
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable
from urllib.parse import unquote, urlparse

from app.backoffice.constants import ALLOWED_IMAGE_TYPES

logger = logging.getLogger(__name__)

CACHE_CONTROL_SECONDS = 3600
_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


class StorageError(RuntimeError):
    pass


class BucketNotFoundError(StorageError):
    pass


class ObjectExistsError(StorageError):
    pass


class Storage:
    bucket: str
    public_base_url: str

    def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        upsert: bool = False,
    ) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def remove(self, keys: list[str]) -> None:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/{self.bucket}/{key.lstrip('/')}"


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    bucket: str = "products"
    public_base_url: str = "http://127.0.0.1:5000/storage"

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        if ".." in safe_key.split("/"):
            raise StorageError(f"Invalid storage key: {key}")
        return self.root / self.bucket / safe_key

    def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        upsert: bool = False,
    ) -> None:
        p = self._path(key)
        if p.exists() and not upsert:
            raise ObjectExistsError(f"The resource already exists: {key}")
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        return self._path(key).open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def remove(self, keys: list[str]) -> None:
        for key in keys:
            p = self._path(key)
            try:
                p.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to delete {key}: {e}") from e


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str = ""

    def _client(self):
        try:
            import boto3  # type: ignore
        except Exception as e:  # pragma: no cover
            raise StorageError("boto3 required for S3 storage. Install boto3.") from e
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    @staticmethod
    def _error_code(exc: Exception) -> str:
        response = getattr(exc, "response", None) or {}
        return str((response.get("Error") or {}).get("Code") or "")

    def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        upsert: bool = False,
    ) -> None:
        from botocore.exceptions import ClientError

        client = self._client()
        if not upsert and self._head(client, key):
            raise ObjectExistsError(f"The resource already exists: {key}")
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        if cache_control:
            extra["CacheControl"] = cache_control
        try:
            client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except ClientError as e:
            if self._error_code(e) == "NoSuchBucket":
                raise BucketNotFoundError(f"Bucket not found: {self.bucket}") from e
            raise StorageError(str(e)) from e

    def _head(self, client, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            code = self._error_code(e)
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            if code == "NoSuchBucket":
                raise BucketNotFoundError(f"Bucket not found: {self.bucket}") from e
            raise StorageError(str(e)) from e

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=key)
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        return self._head(self._client(), key)

    def remove(self, keys: list[str]) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        if not keys:
            return
        try:
            self._client().delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in keys], "Quiet": True},
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(str(e)) from e


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    bucket = (config.get("STORAGE_BUCKET") or "products").strip()
    public_base_url = (config.get("STORAGE_PUBLIC_URL") or "").strip()
    if backend == "s3":
        endpoint = (config.get("S3_ENDPOINT") or "").strip()
        return S3Storage(
            endpoint=endpoint,
            region=(config.get("S3_REGION") or "").strip(),
            bucket=bucket,
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
            public_base_url=public_base_url or (f"https://{endpoint}" if endpoint else ""),
        )
    root = Path(config.get("STORAGE_LOCAL_ROOT") or (Path.cwd() / "storage"))
    return LocalStorage(
        root=root,
        bucket=bucket,
        public_base_url=public_base_url or "http://127.0.0.1:5000/storage",
    )


# ---------- Upload / delete helpers ----------


@dataclass(frozen=True)
class UploadResult:
    success: bool
    url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        out: dict[str, object] = {"success": self.success}
        if self.url is not None:
            out["url"] = self.url
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class UploadFile:
    filename: str
    data: bytes
    content_type: str


def random_object_name(filename: str, *, now_ms: int | None = None) -> str:
    """`<epoch-ms>-<7 random chars>.<ext>`; ext taken from the original filename."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    ext = filename.rsplit(".", 1)[-1] if "." in filename else ""
    ext = "".join(ch for ch in ext.lower() if ch in _RANDOM_ALPHABET) or "bin"
    token = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(7))
    return f"{now_ms}-{token}.{ext}"


def build_object_key(filename: str, folder: str | None = None) -> str:
    name = random_object_name(filename)
    folder = (folder or "").strip().strip("/")
    return f"{folder}/{name}" if folder else name


def validate_image(content_type: str | None, size_bytes: int, *, max_mb: int = 5) -> str | None:
    """Return an error message, or None when the file is an acceptable image."""
    if (content_type or "").lower() not in ALLOWED_IMAGE_TYPES:
        return "Only JPEG, PNG, GIF and WebP images are allowed."
    if size_bytes / (1024 * 1024) > max_mb:
        return f"Image must be {max_mb}MB or smaller."
    return None


def upload_file(
    storage: Storage,
    data: bytes,
    filename: str,
    content_type: str | None = None,
    folder: str | None = None,
) -> UploadResult:
    logger.info("[Storage] Starting upload for file: %s, size: %s bytes", filename, len(data))
    try:
        key = build_object_key(filename, folder)
        logger.info("[Storage] Uploading to bucket: %s, path: %s", storage.bucket, key)
        storage.put_bytes(
            key,
            data,
            content_type=content_type,
            cache_control=f"max-age={CACHE_CONTROL_SECONDS}",
            upsert=False,
        )
    except BucketNotFoundError as e:
        logger.error("[Storage] Upload error: %s", e)
        return UploadResult(
            success=False,
            error=f'Bucket "{storage.bucket}" does not exist. Please create it in the storage console.',
        )
    except StorageError as e:
        logger.error("[Storage] Upload error: %s", e)
        return UploadResult(success=False, error=str(e))
    except Exception as e:
        logger.exception("[Storage] Unexpected error")
        return UploadResult(success=False, error=str(e) or "Failed to upload file")

    url = storage.public_url(key)
    logger.info("[Storage] Public URL generated: %s", url)
    return UploadResult(success=True, url=url)


def upload_files(storage: Storage, files: Iterable[UploadFile], folder: str | None = None) -> list[UploadResult]:
    return [upload_file(storage, f.data, f.filename, f.content_type, folder) for f in files]


def key_from_public_url(storage: Storage, file_url: str) -> str | None:
    """Object path = everything after `/<bucket>/` in the URL path."""
    try:
        path = urlparse(file_url).path
    except ValueError:
        return None
    marker = f"/{storage.bucket}/"
    if marker not in path:
        return None
    key = unquote(path.split(marker, 1)[1])
    return key or None


def delete_file(storage: Storage, file_url: str) -> bool:
    key = key_from_public_url(storage, file_url)
    if not key:
        logger.error("[Storage] Invalid file URL: %s", file_url)
        return False
    try:
        storage.remove([key])
    except StorageError as e:
        logger.error("[Storage] Delete error: %s", e)
        return False
    except Exception:
        logger.exception("[Storage] Unexpected delete error")
        return False
    return True


def delete_files(storage: Storage, file_urls: Iterable[str]) -> bool:
    keys = [k for k in (key_from_public_url(storage, u) for u in file_urls) if k]
    if not keys:
        return False
    try:
        storage.remove(keys)
    except StorageError as e:
        logger.error("[Storage] Delete error: %s", e)
        return False
    except Exception:
        logger.exception("[Storage] Unexpected delete error")
        return False
    return True


def is_bucket_url(storage: Storage, file_url: str | None) -> bool:
    """True when the URL points at an object this storage serves publicly."""
    if not file_url or not storage.public_base_url:
        return False
    return file_url.startswith(storage.public_base_url.rstrip("/") + f"/{storage.bucket}/")
