from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.orm import Session

from app.backoffice.access import is_admin_email, sign_out
from app.backoffice.audit import record_event
from app.backoffice.db import db_session
from app.backoffice.identity import get_identity, mark_signed_in, normalize_email, verify_password
from app.backoffice.utils import ActionResult, safe_next_path

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds

ACCESS_DENIED = "Access denied. You do not have admin privileges."
INVALID_CREDENTIALS = "Invalid email or password"


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        user = get_identity(db_session(), str(user_id))
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        user = None
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def sign_in(s: Session, email: str, password: str) -> ActionResult:
    """
    Password sign-in restricted to allowlisted admin emails.
    On success result.data is the identity and the session holds its id.
    """
    email = normalize_email(email)
    if not email or not password:
        return ActionResult.fail("Email and password are required")

    # Allowlist first: non-admins never reach the credential check.
    if not is_admin_email(email):
        return ActionResult.fail(ACCESS_DENIED)

    user = verify_password(s, email, password)
    if not user:
        return ActionResult.fail(INVALID_CREDENTIALS)

    session["user_id"] = user.id
    g.current_user = user

    if not is_admin_email(user.email):
        sign_out()
        return ActionResult.fail(ACCESS_DENIED)

    mark_signed_in(user)
    return ActionResult.ok(user)


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = normalize_email(request.form.get("email"))
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    try:
        s = db_session()
        result = sign_in(s, email, password)
        if not result.success:
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email or None,
                reason=result.error,
                metadata={"email": email},
            )
            s.commit()
            flash(result.error or INVALID_CREDENTIALS, "danger")
            return redirect(url_for("auth.login_get", next=nxt) if nxt else url_for("auth.login_get"))

        user = result.data
        _login_attempts[ip].clear()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=user.id)
        s.commit()
        return redirect(safe_next_path(nxt) or url_for("admin.index"))
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.route("/logout", methods=["GET", "POST"])
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=user.id)
        s.commit()
    sign_out()
    flash("Signed out.", "success")
    return redirect(url_for("auth.login_get"))
