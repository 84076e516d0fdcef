import os
from dataclasses import dataclass, field


DEFAULT_ADMIN_EMAILS = ("admin@example.com",)


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    admin_emails: tuple[str, ...] = field(default=DEFAULT_ADMIN_EMAILS)

    storage_backend: str = "local"
    storage_bucket: str = "products"
    storage_local_root: str = "storage"
    storage_public_url: str = ""
    upload_max_mb: int = 5

    s3_endpoint: str = ""
    s3_region: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def parse_admin_emails(raw: str | None) -> tuple[str, ...]:
    """Comma-separated list -> normalized (trimmed, lowercased) tuple."""
    if not raw or not raw.strip():
        return DEFAULT_ADMIN_EMAILS
    emails = [e.strip().lower() for e in raw.split(",")]
    return tuple(e for e in emails if e)


def _default_public_url(backend: str, endpoint: str) -> str:
    if backend == "s3":
        return f"https://{endpoint}" if endpoint else ""
    return "http://127.0.0.1:5000/storage"


def load_settings() -> Settings:
    backend = _getenv("STORAGE_BACKEND", "local").lower()
    endpoint = _getenv("S3_ENDPOINT", "")
    try:
        upload_max_mb = int(_getenv("UPLOAD_MAX_MB", "5"))
    except ValueError:
        upload_max_mb = 5
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///backoffice.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        admin_emails=parse_admin_emails(os.environ.get("ADMIN_EMAILS")),
        storage_backend=backend,
        storage_bucket=_getenv("STORAGE_BUCKET", "products"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", os.path.join(os.getcwd(), "storage")),
        storage_public_url=_getenv("STORAGE_PUBLIC_URL", _default_public_url(backend, endpoint)).rstrip("/"),
        upload_max_mb=upload_max_mb,
        s3_endpoint=endpoint,
        s3_region=_getenv("S3_REGION", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "ADMIN_EMAILS": s.admin_emails,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_BUCKET": s.storage_bucket,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "STORAGE_PUBLIC_URL": s.storage_public_url,
        "UPLOAD_MAX_MB": s.upload_max_mb,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # whole-request cap; per-image limit is UPLOAD_MAX_MB
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
