from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, TypeVar
from urllib.parse import urlparse

T = TypeVar("T")

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


@dataclass
class ActionResult:
    """Outcome of a mutating action; routes turn it into a flash message."""

    success: bool
    error: str | None = None
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class Page(Generic[T]):
    """One page of rows plus the total row count across all pages."""

    data: list[T] = field(default_factory=list)
    count: int = 0
    limit: int = 50
    offset: int = 0

    @property
    def page(self) -> int:
        return (self.offset // self.limit) + 1 if self.limit else 1

    @property
    def has_prev(self) -> bool:
        return self.offset > 0

    @property
    def has_next(self) -> bool:
        return self.offset + self.limit < self.count

    @property
    def showing_from(self) -> int:
        return self.offset + 1 if self.data else 0

    @property
    def showing_to(self) -> int:
        return self.offset + len(self.data)


def page_offset(page: int, limit: int) -> int:
    return (max(page, 1) - 1) * limit


def parse_int_arg(raw: str | None, default: int, *, minimum: int = 1, maximum: int | None = None) -> int:
    """Lenient int parsing for query strings (?page=, ?limit=)."""
    try:
        value = int((raw or "").strip())
    except ValueError:
        return default
    if value < minimum:
        return default
    if maximum is not None and value > maximum:
        return maximum
    return value


def parse_decimal(raw: Any) -> Decimal | None:
    if raw is None:
        return None
    if isinstance(raw, Decimal):
        return raw
    text = str(raw).strip()
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def parse_int(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    text = str(raw).strip()
    if not re.fullmatch(r"-?\d+", text):
        return None
    return int(text)


def clean_str(raw: Any) -> str | None:
    """Trim; empty -> None."""
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def split_lines(raw: str | None) -> list[str]:
    """Textarea with one value per line -> list of non-empty values."""
    if not raw:
        return []
    return [line.strip() for line in raw.splitlines() if line.strip()]


def is_valid_email(email: str | None) -> bool:
    return bool(email and _EMAIL_RE.match(email))


def is_valid_url(url: str | None) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_valid_uuid(value: str | None) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def safe_next_path(nxt: str | None) -> str | None:
    """Only allow local paths as redirect targets."""
    nxt = (nxt or "").strip()
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None
