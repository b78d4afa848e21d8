from __future__ import annotations

import os

from dotenv import load_dotenv


def _load_dotenv_if_present() -> None:
    """
    Load environment variables from a local `.env` file (dev convenience).

    Production deployments should set real environment variables instead.
    """
    # Do not override existing environment variables.
    load_dotenv(override=False)


# Load .env as early as possible (dev only).
_load_dotenv_if_present()


def _int_env(name: str, default: int, *, lo: int, hi: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        v = int(raw or str(default))
    except ValueError:
        v = default
    return max(lo, min(hi, v))


def database_url() -> str:
    url = os.environ.get("DATABASE_URL") or "sqlite:///./local.db"
    # Some managed providers still supply `postgres://...` which SQLAlchemy treats as invalid.
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def jwt_secret() -> str:
    return os.environ.get("JWT_SECRET") or "dev-secret-change-me"


def jwt_exp_days() -> int:
    """Access token lifetime in days (env `JWT_EXP_DAYS`, 1..90)."""
    return _int_env("JWT_EXP_DAYS", 7, lo=1, hi=90)


def is_local_dev() -> bool:
    """
    We treat the app as "local dev" when DATABASE_URL is not set, because
    `database_url()` falls back to sqlite in that case.
    """
    return not (os.environ.get("DATABASE_URL") or "").strip()


def app_env() -> str:
    """
    Application environment marker:
    - local (default when running with sqlite fallback)
    - staging
    - prod
    """
    raw = (os.environ.get("APP_ENV") or "").strip().lower()
    if raw:
        return raw
    return "local" if is_local_dev() else "prod"


def allowed_hosts() -> list[str]:
    """
    Comma-separated list for TrustedHost middleware.
    Example: ALLOWED_HOSTS=api.example.com,example.com
    """
    raw = (os.environ.get("ALLOWED_HOSTS") or "").strip()
    if not raw:
        return ["*"]
    hosts = [h.strip() for h in raw.split(",") if h.strip()]
    return hosts or ["*"]


def cors_origins() -> list[str]:
    raw = (os.environ.get("CORS_ORIGINS") or "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]


def log_level() -> str:
    return (os.environ.get("LOG_LEVEL") or "INFO").strip().upper() or "INFO"


def enforce_secure_secrets() -> None:
    """
    Fail-fast in production if dangerous defaults are still in use.
    """
    if app_env() in {"prod", "production"}:
        if jwt_secret() == "dev-secret-change-me":
            raise RuntimeError("JWT_SECRET must be set in production (default dev secret detected)")


# -----------------------
# Property cache windows (seconds)
# -----------------------
def property_list_cache_ttl() -> int:
    return _int_env("PROPERTY_LIST_CACHE_TTL_SECONDS", 300, lo=0, hi=3600)


def property_detail_cache_ttl() -> int:
    return _int_env("PROPERTY_DETAIL_CACHE_TTL_SECONDS", 120, lo=0, hi=3600)


def property_stats_cache_ttl() -> int:
    return _int_env("PROPERTY_STATS_CACHE_TTL_SECONDS", 60, lo=0, hi=3600)


# -----------------------
# Bootstrap admin (optional, seeded on startup)
# -----------------------
def bootstrap_admin_email() -> str:
    return (os.environ.get("BOOTSTRAP_ADMIN_EMAIL") or "").strip().lower()


def bootstrap_admin_password() -> str:
    return (os.environ.get("BOOTSTRAP_ADMIN_PASSWORD") or "").strip()


def bootstrap_admin_name() -> str:
    return (os.environ.get("BOOTSTRAP_ADMIN_NAME") or "System Administrator").strip()


def bcrypt_rounds() -> int:
    return _int_env("BCRYPT_ROUNDS", 12, lo=4, hi=15)
