"""
Auth identity admin operations.

Mirrors the admin surface of a hosted auth provider: create / get / update /
delete identities, plus password verification for sign-in. Callers
own the session commit, so a multi-step flow can commit an identity on its
own and compensate later if a dependent write fails.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from app.backoffice.models import User


class IdentityError(RuntimeError):
    pass


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def get_identity(s: Session, user_id: str) -> User | None:
    if not user_id:
        return None
    return s.get(User, str(user_id))


def find_identity_by_email(s: Session, email: str) -> User | None:
    em = normalize_email(email)
    if not em:
        return None
    return s.query(User).filter(func.lower(User.email) == em).one_or_none()


def create_identity(s: Session, *, email: str, password: str, email_confirm: bool = True) -> User:
    em = normalize_email(email)
    if not em:
        raise IdentityError("Email is required")
    if not password:
        raise IdentityError("Password is required")
    if find_identity_by_email(s, em):
        raise IdentityError("A user with this email address has already been registered")
    now = datetime.utcnow()
    user = User(
        email=em,
        password_hash=generate_password_hash(password),
        is_active=True,
        email_confirmed_at=now if email_confirm else None,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    return user


def update_identity_email(s: Session, user_id: str, email: str) -> User:
    user = get_identity(s, user_id)
    if not user:
        raise IdentityError("User not found")
    em = normalize_email(email)
    if not em:
        raise IdentityError("Email is required")
    other = find_identity_by_email(s, em)
    if other and other.id != user.id:
        raise IdentityError("A user with this email address has already been registered")
    user.email = em
    user.updated_at = datetime.utcnow()
    return user


def delete_identity(s: Session, user_id: str) -> None:
    user = get_identity(s, user_id)
    if not user:
        raise IdentityError("User not found")
    s.delete(user)
    s.flush()


def verify_password(s: Session, email: str, password: str) -> User | None:
    """Identity for valid, active credentials; None otherwise."""
    user = find_identity_by_email(s, email)
    if not user or not user.is_active:
        return None
    if not check_password_hash(user.password_hash, password or ""):
        return None
    return user


def mark_signed_in(user: User) -> None:
    user.last_sign_in_at = datetime.utcnow()
