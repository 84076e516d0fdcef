from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from flask import abort, current_app, g, redirect, request, session, url_for

from app.backoffice.models import User


def admin_emails() -> tuple[str, ...]:
    return tuple(current_app.config.get("ADMIN_EMAILS") or ())


def is_admin_email(email: str | None, allowlist: Iterable[str] | None = None) -> bool:
    if not email:
        return False
    allowed = admin_emails() if allowlist is None else tuple(allowlist)
    return email.strip().lower() in allowed


def user_is_admin(user: User | None) -> bool:
    return bool(user and user.is_active and is_admin_email(user.email))


def sign_out() -> None:
    session.pop("user_id", None)
    g.current_user = None


def _login_redirect():
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def admin_gate():
    """
    before_request hook:
    - /admin/* without a user -> login
    - /admin/* with a non-allowlisted user -> sign out, then login
    - /auth/login while already an admin -> dashboard
    """
    path = request.path
    user: User | None = getattr(g, "current_user", None)

    if path == "/admin" or path.startswith("/admin/"):
        if not user:
            return _login_redirect()
        if not user_is_admin(user):
            current_app.logger.warning(
                "Non-admin session rejected (email=%s request_id=%s)", user.email, getattr(g, "request_id", None)
            )
            sign_out()
            return redirect(url_for("auth.login_get"))
        return None

    if path == "/auth/login" and request.method == "GET" and user_is_admin(user):
        return redirect(url_for("admin.index"))
    return None


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        # Unauthenticated → redirect to login
        if not user or not user.is_active:
            return _login_redirect()
        # Authenticated but not on the allowlist → 403
        if not is_admin_email(user.email):
            abort(403)
        return fn(*args, **kwargs)

    return wrapped
