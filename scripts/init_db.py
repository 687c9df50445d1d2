import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.feebook.models import Moderator  # noqa: E402
from scripts._db_utils import database_url, script_session  # noqa: E402


def seed_only(*, database_url_override: str | None = None) -> None:
    """
    Seed the first moderator account in an idempotent way.
    Does NOT overwrite an existing moderator's password.
    """
    email = (os.environ.get("MODERATOR_EMAIL") or "admin@feebook.local").strip().lower()
    password = os.environ.get("MODERATOR_PASSWORD") or "change-me"
    name = (os.environ.get("MODERATOR_NAME") or "Feebook Admin").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(database_url(database_url_override)) as s:
        m = s.query(Moderator).filter(Moderator.email == email).one_or_none()
        if m is None:
            s.add(Moderator(email=email, name=name, password_hash=generate_password_hash(password), is_active=True))
            print(f"Created moderator {email}", flush=True)
        else:
            print(f"Moderator {email} already exists; password left unchanged", flush=True)


def main() -> None:
    seed_only()


if __name__ == "__main__":
    main()
