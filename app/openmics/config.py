import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str
    cors_origins: tuple[str, ...]
    port: str

    admin_email: str
    admin_password: str
    admin_full_name: str

    @property
    def is_production(self) -> bool:
        return self.env.lower() in ("prod", "production")


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _split_origins(raw: str) -> tuple[str, ...]:
    """CORS origins from a comma-separated string ("*" allows any)."""
    return tuple(o.strip() for o in raw.split(",") if o.strip())


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///openmics.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=_split_origins(_getenv("CORS_ORIGINS", "*")),
        port=_getenv("PORT", "3000"),
        admin_email=_getenv("ADMIN_EMAIL", "admin@openmics.local").lower(),
        admin_password=os.environ.get("ADMIN_PASSWORD") or "change-me",
        admin_full_name=_getenv("ADMIN_FULL_NAME", "Administrator"),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "CORS_ORIGINS": list(s.cors_origins),
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": s.is_production,  # Require HTTPS in production
        # listings are small JSON documents
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
