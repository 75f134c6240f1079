import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    results_per_page: int
    show_error_details: bool

    app_url: str
    activation_path: str
    activation_token_ttl_hours: int

    mail_enabled: bool
    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password: str
    smtp_use_tls: bool
    smtp_use_ssl: bool
    smtp_from_email: str
    smtp_from_name: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    env = _getenv("ENV", "development")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=env,
        database_url=_getenv("DATABASE_URL", "sqlite:///portal.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        results_per_page=_getenv_int("RESULTS_PER_PAGE", 25),
        show_error_details=_getenv_bool("SHOW_ERROR_DETAILS", env == "development"),
        app_url=_getenv("APP_URL", "http://localhost:8000").rstrip("/"),
        activation_path="/" + _getenv("ACTIVATION_PATH", "/activate").lstrip("/"),
        activation_token_ttl_hours=_getenv_int("ACTIVATION_TOKEN_TTL_HOURS", 48),
        mail_enabled=_getenv_bool("MAIL_ENABLED", False),
        smtp_host=_getenv("SMTP_HOST", "localhost"),
        smtp_port=_getenv_int("SMTP_PORT", 587),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        smtp_use_tls=_getenv_bool("SMTP_USE_TLS", True),
        smtp_use_ssl=_getenv_bool("SMTP_USE_SSL", False),
        smtp_from_email=_getenv("SMTP_FROM_EMAIL", "noreply@example.com"),
        smtp_from_name=_getenv("SMTP_FROM_NAME", "User Portal"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "RESULTS_PER_PAGE": s.results_per_page,
        "SHOW_ERROR_DETAILS": s.show_error_details,
        "APP_URL": s.app_url,
        "ACTIVATION_PATH": s.activation_path,
        "ACTIVATION_TOKEN_TTL_HOURS": s.activation_token_ttl_hours,
        "MAIL_ENABLED": s.mail_enabled,
        "SMTP_HOST": s.smtp_host,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMTP_USE_SSL": s.smtp_use_ssl,
        "SMTP_FROM_EMAIL": s.smtp_from_email,
        "SMTP_FROM_NAME": s.smtp_from_name,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }


def error_message(exc: BaseException, where: str, default: str, *, show_details: bool = False) -> str:
    """
    User-facing text for a failure caught at a handler boundary.

    Returns `default` unless details are enabled (development), in which case the
    location and exception text are appended.
    """
    if not show_details:
        return default
    return f"{default} [{where}: {type(exc).__name__}: {exc}]"
