import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.backoffice.config import parse_admin_emails
from app.backoffice.identity import create_identity, find_identity_by_email, normalize_email
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Create the admin identity if it does not exist yet.
    Never overwrites an existing identity's password.
    """
    admin_email = normalize_email(os.environ.get("ADMIN_EMAIL") or "admin@example.com")
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///backoffice.db").strip()

    allowlist = parse_admin_emails(os.environ.get("ADMIN_EMAILS"))
    if admin_email not in allowlist:
        print(
            f"WARNING: ADMIN_EMAIL={admin_email} is not on ADMIN_EMAILS; this identity will not be able to sign in.",
            flush=True,
        )

    with script_session(db_url) as s:
        if find_identity_by_email(s, admin_email):
            print(f"Admin identity already exists: {admin_email}", flush=True)
            return
        create_identity(s, email=admin_email, password=admin_password, email_confirm=True)
        print(f"Created admin identity: {admin_email}", flush=True)


def main() -> None:
    seed_only()


if __name__ == "__main__":
    main()
