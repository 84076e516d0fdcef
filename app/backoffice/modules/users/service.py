"""
USER LIFECYCLE
==============

A marketplace user is two records sharing one id:

  auth identity (users)  ->  store profile (profiles)

The identity is written and committed first, then the profile. If the profile
insert fails, the identity is deleted again (best-effort; there is no retry).

Admin identities (emails on ADMIN_EMAILS) never show up in the user listing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.backoffice.access import admin_emails
from app.backoffice.audit import record_event
from app.backoffice.constants import CURRENCIES
from app.backoffice.identity import (
    IdentityError,
    create_identity,
    delete_identity,
    find_identity_by_email,
    get_identity,
    normalize_email,
    update_identity_email,
)
from app.backoffice.models import User
from app.backoffice.modules.users.models import Profile
from app.backoffice.utils import ActionResult, Page, clean_str, is_valid_email, is_valid_url

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "store_username", "currency", "bio", "profile_image", "address")
_USERNAME_RE = re.compile(r"^[a-z0-9_]+$")


@dataclass
class UserRow:
    """Profile joined with the identity email (None when the identity is gone)."""

    profile: Profile
    email: str | None

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__") or name == "profile":
            raise AttributeError(name)
        return getattr(self.profile, name)


# ---------- Validation ----------


def _validate_password(password: str) -> list[str]:
    errors = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number")
    return errors


def _validate_common(payload: dict, errors: list[str]) -> None:
    name = payload.get("name")
    if name is not None and not (2 <= len(name) <= 100):
        errors.append("Name must be between 2 and 100 characters")

    currency = payload.get("currency")
    if currency is not None and currency not in CURRENCIES:
        errors.append("Invalid currency")

    bio = payload.get("bio")
    if bio is not None and len(bio) > 500:
        errors.append("Bio must not exceed 500 characters")

    image = payload.get("profile_image")
    if image is not None and not is_valid_url(image):
        errors.append("Profile image must be a valid URL")


def validate_create_user_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    if not payload.get("name"):
        errors.append("Name is required")
    if not payload.get("email"):
        errors.append("Email is required")
    elif not is_valid_email(payload["email"]):
        errors.append("Must be a valid email address")

    password = payload.get("password") or ""
    if not password:
        errors.append("Password is required")
    else:
        errors.extend(_validate_password(password))

    username = payload.get("store_username")
    if not username:
        errors.append("Store username is required")
    else:
        if not (3 <= len(username) <= 50):
            errors.append("Username must be between 3 and 50 characters")
        if " " in username:
            errors.append("Username cannot contain spaces")
        elif not _USERNAME_RE.match(username):
            errors.append("Username can only contain lowercase letters, numbers, and underscores")

    if not payload.get("currency"):
        errors.append("Currency is required")
    if not payload.get("address"):
        errors.append("Address is required")

    _validate_common(payload, errors)
    return errors


def validate_update_user_payload(payload: dict) -> list[str]:
    """Every field optional; store_username keeps only length + no-spaces rules."""
    errors: list[str] = []
    email = payload.get("email")
    if email is not None and not is_valid_email(email):
        errors.append("Must be a valid email address")
    username = payload.get("store_username")
    if username is not None:
        if not (3 <= len(username) <= 50):
            errors.append("Username must be between 3 and 50 characters")
        if " " in username:
            errors.append("Username cannot contain spaces")
    _validate_common(payload, errors)
    return errors


def user_payload_from_form(form) -> dict:
    """Normalize submitted form fields; blank optional fields become None."""
    payload: dict[str, Any] = {}
    for key in ("name", "email", "password", "store_username", "currency", "bio", "profile_image", "address"):
        if key not in form:
            continue
        value = form.get(key)
        payload[key] = value if key == "password" else clean_str(value)
    if payload.get("email"):
        payload["email"] = normalize_email(payload["email"])
    return payload


# ---------- Reads ----------


def _non_admin_filter(q, emails: tuple[str, ...]):
    if not emails:
        return q
    return q.filter(or_(User.email.is_(None), ~func.lower(User.email).in_(emails)))


def get_users(s: Session, *, limit: int = 10, offset: int = 0) -> Page[UserRow]:
    """
    Profiles (newest first) with identity emails. Admin identities are excluded
    in the query itself so `count` and page boundaries agree.
    """
    q = s.query(Profile, User.email).outerjoin(User, User.id == Profile.id)
    q = _non_admin_filter(q, admin_emails())
    total = q.count()
    rows = (
        q.order_by(Profile.created_at.desc(), Profile.id.asc())
        .offset(max(offset, 0))
        .limit(limit)
        .all()
    )
    return Page(data=[UserRow(profile=p, email=email) for p, email in rows], count=total, limit=limit, offset=offset)


def count_users(s: Session) -> int:
    q = s.query(Profile.id).outerjoin(User, User.id == Profile.id)
    return _non_admin_filter(q, admin_emails()).count()


def get_user_by_id(s: Session, user_id: str) -> UserRow | None:
    profile = s.get(Profile, user_id) if user_id else None
    if not profile:
        return None
    identity = get_identity(s, profile.id)
    return UserRow(profile=profile, email=identity.email if identity else None)


def get_user_by_username(s: Session, username: str) -> UserRow | None:
    if not username:
        return None
    profile = s.query(Profile).filter(Profile.store_username == username).one_or_none()
    if not profile:
        return None
    identity = get_identity(s, profile.id)
    return UserRow(profile=profile, email=identity.email if identity else None)


def check_username_availability(s: Session, username: str) -> dict[str, bool]:
    try:
        taken = s.query(Profile.id).filter(Profile.store_username == username).first()
    except SQLAlchemyError:
        logger.exception("Error checking username availability (username=%s)", username)
        # Unknown is treated as taken.
        return {"available": False}
    return {"available": taken is None}


def search_profiles(s: Session, query: str, *, limit: int = 10) -> list[Profile]:
    like = f"%{(query or '').strip()}%"
    return (
        s.query(Profile)
        .filter(or_(Profile.name.ilike(like), Profile.store_username.ilike(like)))
        .order_by(Profile.name.asc())
        .limit(limit)
        .all()
    )


def list_store_options(s: Session) -> list[Profile]:
    return s.query(Profile).order_by(Profile.name.asc()).all()


# ---------- Create ----------


def _insert_profile(s: Session, user_id: str, payload: dict) -> Profile:
    now = datetime.utcnow()
    profile = Profile(
        id=user_id,
        name=payload["name"],
        store_username=payload["store_username"],
        currency=payload["currency"],
        bio=payload.get("bio") or None,
        profile_image=payload.get("profile_image") or None,
        address=payload["address"],
        created_at=now,
        updated_at=now,
    )
    s.add(profile)
    s.flush()
    return profile


def _delete_profile_row(s: Session, profile_id: str) -> None:
    s.query(Profile).filter(Profile.id == profile_id).delete(synchronize_session=False)


def create_user(s: Session, payload: dict, actor: User | None = None) -> ActionResult:
    email = normalize_email(payload.get("email"))
    username = payload.get("store_username") or ""
    try:
        if find_identity_by_email(s, email):
            return ActionResult.fail("A user with this email already exists")

        existing = s.query(Profile).filter(Profile.store_username == username).one_or_none()
        if existing:
            if get_identity(s, existing.id):
                return ActionResult.fail("This store username is already in use")
            logger.info("Cleaning up orphaned profile: %s", existing.id)
            _delete_profile_row(s, existing.id)
            s.commit()

        try:
            identity = create_identity(s, email=email, password=payload.get("password") or "", email_confirm=True)
            s.commit()
        except (IdentityError, SQLAlchemyError) as e:
            s.rollback()
            logger.error("Error creating auth user: %s", e)
            return ActionResult.fail(str(e))
        identity_id = identity.id

        if s.get(Profile, identity_id):
            logger.info("Cleaning up existing profile for user ID: %s", identity_id)
            _delete_profile_row(s, identity_id)
            s.commit()

        try:
            profile = _insert_profile(s, identity_id, payload)
            if actor is not None:
                record_event(
                    s,
                    actor=actor,
                    action="user.create",
                    entity_type="Profile",
                    entity_id=profile.id,
                    metadata={"email": email, "store_username": profile.store_username},
                )
            s.commit()
        except SQLAlchemyError as e:
            s.rollback()
            logger.error("Error creating profile: %s", e)
            _rollback_identity(s, identity_id)
            return ActionResult.fail(f"Failed to create profile: {e}")

        return ActionResult.ok(identity)
    except Exception:
        s.rollback()
        logger.exception("Failed to create user (email=%s)", email)
        return ActionResult.fail("An error occurred while creating user")


def _rollback_identity(s: Session, identity_id: str) -> None:
    try:
        delete_identity(s, identity_id)
        s.commit()
        logger.info("Rolled back auth user %s after profile failure", identity_id)
    except (IdentityError, SQLAlchemyError) as e:
        s.rollback()
        logger.error("Rollback of auth user %s failed: %s", identity_id, e)


# ---------- Update ----------


def update_user(s: Session, user_id: str, payload: dict, actor: User | None = None) -> ActionResult:
    try:
        profile_updates = {k: payload[k] for k in PROFILE_FIELDS if k in payload}
        # name/store_username/currency/address are NOT NULL: blank means "leave as is"
        for key in ("name", "store_username", "currency", "address"):
            if key in profile_updates and not profile_updates[key]:
                profile_updates.pop(key)
        email = normalize_email(payload.get("email")) or None

        new_username = profile_updates.get("store_username")
        if new_username:
            taken = (
                s.query(Profile.id)
                .filter(Profile.store_username == new_username, Profile.id != user_id)
                .first()
            )
            if taken:
                return ActionResult.fail("This store username is already in use")

        changes: dict[str, dict] = {}
        if profile_updates:
            profile = s.get(Profile, user_id)
            if not profile:
                return ActionResult.fail("User not found")
            for key, value in profile_updates.items():
                old = getattr(profile, key)
                if old != value:
                    changes[key] = {"old": old, "new": value}
                    setattr(profile, key, value)
            profile.updated_at = datetime.utcnow()
            try:
                s.flush()
                s.commit()
            except SQLAlchemyError as e:
                s.rollback()
                logger.error("Error updating profile: %s", e)
                return ActionResult.fail(str(e))

        if email:
            other = find_identity_by_email(s, email)
            if other and other.id != user_id:
                return ActionResult.fail("This email is already in use")
            identity = get_identity(s, user_id)
            if not identity or identity.email != email:
                try:
                    old_email = identity.email if identity else None
                    update_identity_email(s, user_id, email)
                    s.commit()
                    changes["email"] = {"old": old_email, "new": email}
                except (IdentityError, SQLAlchemyError) as e:
                    s.rollback()
                    logger.error("Error updating user email: %s", e)
                    return ActionResult.fail(str(e))

        if actor is not None and changes:
            record_event(s, actor=actor, action="user.edit", entity_type="Profile", entity_id=user_id, metadata={"changes": changes})
            s.commit()
        return ActionResult.ok()
    except Exception:
        s.rollback()
        logger.exception("Failed to update user (id=%s)", user_id)
        return ActionResult.fail("An error occurred while updating user")


# ---------- Delete ----------


def delete_user(s: Session, user_id: str, actor: User | None = None) -> ActionResult:
    try:
        try:
            delete_identity(s, user_id)
            s.commit()
        except (IdentityError, SQLAlchemyError) as e:
            s.rollback()
            logger.error("Error deleting auth user: %s", e)
            return ActionResult.fail(str(e))

        try:
            profile = s.get(Profile, user_id)
            if profile:
                s.delete(profile)
            if actor is not None:
                record_event(s, actor=actor, action="user.delete", entity_type="Profile", entity_id=user_id)
            s.commit()
        except SQLAlchemyError as e:
            # Identity is already gone; a leftover profile is an orphan the create flow can reclaim.
            s.rollback()
            logger.error("Error deleting profile: %s", e)

        return ActionResult.ok()
    except Exception:
        s.rollback()
        logger.exception("Failed to delete user (id=%s)", user_id)
        return ActionResult.fail("An error occurred while deleting user")
