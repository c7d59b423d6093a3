import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.openmics.config import Settings, load_settings
from app.openmics.models import User
from scripts._db_utils import script_session


def seed_only(settings: Settings | None = None) -> User:
    """
    Make sure the admin account from ADMIN_EMAIL exists.
    An existing account is left alone, password included.
    """
    settings = settings or load_settings()

    with script_session(settings.database_url) as s:
        user = s.query(User).filter(User.email == settings.admin_email).one_or_none()
        if user is None:
            user = User(
                email=settings.admin_email,
                full_name=settings.admin_full_name,
                password_hash=generate_password_hash(settings.admin_password),
                is_active=True,
            )
            s.add(user)
            print(f"Created admin account {settings.admin_email}.", flush=True)
        else:
            print(f"Admin account {settings.admin_email} already exists; left unchanged.", flush=True)
    return user


def main() -> None:
    seed_only()


if __name__ == "__main__":
    main()
