import os
from dataclasses import dataclass


def _bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _default_sqlite_uri() -> str:
    # asset_manager/ -> project root
    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    instance_dir = os.path.join(project_root, "instance")
    os.makedirs(instance_dir, exist_ok=True)
    db_path = os.path.join(instance_dir, "asset_manager.db")
    return "sqlite:///" + db_path


def engine_options(database_uri: str, timeout_seconds: int) -> dict:
    """
    Bound every statement so a stalled database cannot hang the security checks.
    """
    if database_uri.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "connect_args": {"options": f"-c statement_timeout={timeout_seconds * 1000}"},
        }
    if database_uri.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout_seconds}}
    return {"pool_pre_ping": True}


@dataclass(frozen=True)
class BaseConfig:
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    DB_STATEMENT_TIMEOUT_SECONDS: int = _int(os.getenv("DB_STATEMENT_TIMEOUT_SECONDS"), 30)

    IS_PRODUCTION: bool = False

    SESSION_COOKIE_HTTPONLY: bool = True
    SESSION_COOKIE_SAMESITE: str = "Lax"
    SESSION_COOKIE_SECURE: bool = _bool(os.getenv("SESSION_COOKIE_SECURE"), default=False)

    # Account lockout
    MAX_LOGIN_ATTEMPTS: int = _int(os.getenv("MAX_LOGIN_ATTEMPTS"), 5)
    LOCKOUT_DURATION_MINUTES: int = _int(os.getenv("LOCKOUT_DURATION_MINUTES"), 30)
    FAILURE_LOOKBACK_MINUTES: int = _int(os.getenv("FAILURE_LOOKBACK_MINUTES"), 60)
    ATTEMPT_RETENTION_HOURS: int = _int(os.getenv("ATTEMPT_RETENTION_HOURS"), 24)
    LOCKOUT_PURGE_GRACE_HOURS: int = _int(os.getenv("LOCKOUT_PURGE_GRACE_HOURS"), 1)
    LOCKOUT_FAIL_CLOSED: bool = _bool(os.getenv("LOCKOUT_FAIL_CLOSED"), default=False)
    SECURITY_SWEEP_ON_STARTUP: bool = _bool(os.getenv("SECURITY_SWEEP_ON_STARTUP"), default=True)
    SECURITY_SWEEP_INTERVAL_SECONDS: int = _int(os.getenv("SECURITY_SWEEP_INTERVAL_SECONDS"), 3600)

    # Rate limiting (fixed windows)
    RATE_LIMIT_ENABLED: bool = _bool(os.getenv("RATE_LIMIT_ENABLED"), default=True)
    RATE_LIMIT_STORAGE: str = os.getenv("RATE_LIMIT_STORAGE", "memory")
    LOGIN_RATE_WINDOW_SECONDS: int = _int(os.getenv("LOGIN_RATE_WINDOW_SECONDS"), 15 * 60)
    LOGIN_RATE_MAX: int = _int(os.getenv("LOGIN_RATE_MAX"), 5)
    API_RATE_WINDOW_SECONDS: int = _int(os.getenv("API_RATE_WINDOW_SECONDS"), 15 * 60)
    API_RATE_MAX: int = _int(os.getenv("API_RATE_MAX"), 100)
    PASSWORD_RESET_RATE_WINDOW_SECONDS: int = _int(os.getenv("PASSWORD_RESET_RATE_WINDOW_SECONDS"), 60 * 60)
    PASSWORD_RESET_RATE_MAX: int = _int(os.getenv("PASSWORD_RESET_RATE_MAX"), 3)
    REGISTRATION_RATE_WINDOW_SECONDS: int = _int(os.getenv("REGISTRATION_RATE_WINDOW_SECONDS"), 60 * 60)
    REGISTRATION_RATE_MAX: int = _int(os.getenv("REGISTRATION_RATE_MAX"), 3)
    GENERAL_RATE_WINDOW_SECONDS: int = _int(os.getenv("GENERAL_RATE_WINDOW_SECONDS"), 15 * 60)
    GENERAL_RATE_MAX: int = _int(os.getenv("GENERAL_RATE_MAX"), 500)
    CSP_REPORT_RATE_WINDOW_SECONDS: int = _int(os.getenv("CSP_REPORT_RATE_WINDOW_SECONDS"), 15 * 60)
    CSP_REPORT_RATE_MAX: int = _int(os.getenv("CSP_REPORT_RATE_MAX"), 50)

    # Number of reverse proxies in front of the app whose X-Forwarded-For entry is trusted.
    # 0 = use the socket peer address only.
    PROXY_FIX_X_FOR: int = _int(os.getenv("PROXY_FIX_X_FOR"), 0)

    # CSRF
    CSRF_ENABLED: bool = _bool(os.getenv("CSRF_ENABLED"), default=True)
    CSRF_EXEMPT_PATHS: tuple = ("/health", "/api/health", "/security/csp-report")

    SECURITY_EVENTS_PERSIST: bool = _bool(os.getenv("SECURITY_EVENTS_PERSIST"), default=True)
    SECURITY_EVENT_RETENTION_DAYS: int = _int(os.getenv("SECURITY_EVENT_RETENTION_DAYS"), 30)


class DevelopmentConfig(BaseConfig):
    DEBUG: bool = True


class ProductionConfig(BaseConfig):
    DEBUG: bool = False
    IS_PRODUCTION: bool = True
    SESSION_COOKIE_SECURE: bool = True


def get_config():
    env = os.getenv("FLASK_ENV", "development").lower()
    if env == "production":
        return ProductionConfig
    return DevelopmentConfig
