from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 7 * 24 * 3600  # 1 week


@dataclass(frozen=True)
class AuthConfig:
    # Deployment
    app_env: str  # development|production|test
    dev_login_enabled: bool

    # Session configuration
    public_base_url: Optional[str]  # Required for OAuth redirects
    session_secret: Optional[str]  # Signs the session cookie
    session_ttl_seconds: int
    cookie_secure: bool

    # OAuth providers (optional)
    google_client_id: Optional[str]
    google_client_secret: Optional[str]
    facebook_app_id: Optional[str]
    facebook_app_secret: Optional[str]

    # Initial admin bootstrap
    admin_initial_username: str
    admin_initial_password: Optional[str]
    admin_initial_email: Optional[str]

    # Login throttling
    login_max_attempts: int
    login_window_seconds: int

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def facebook_enabled(self) -> bool:
        return bool(self.facebook_app_id and self.facebook_app_secret)

    @property
    def dev_login_allowed(self) -> bool:
        """Dev bypass is never reachable in production, whatever DEV_LOGIN_ENABLED says."""
        return self.dev_login_enabled and not self.is_production

    def enabled_providers(self) -> List[str]:
        out: List[str] = []
        if self.google_enabled:
            out.append("google")
        if self.facebook_enabled:
            out.append("facebook")
        return out


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(float(raw))
    except ValueError:
        return default


def _env_str(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    Google/Facebook sign-in is enabled when both of the provider's credentials are set.
    The dev bypass defaults to on outside production and is forced off in production.
    """
    app_env = (os.getenv("APP_ENV", "") or "development").strip().lower()
    is_production = app_env == "production"

    public_base_url = _env_str("AUTH_PUBLIC_BASE_URL")
    cookie_secure_env = (os.getenv("AUTH_COOKIE_SECURE", "") or "").strip().lower()
    if cookie_secure_env in ("1", "true", "yes", "on"):
        cookie_secure = True
    elif cookie_secure_env in ("0", "false", "no", "off"):
        cookie_secure = False
    else:
        # Default: secure cookies when base URL is https; otherwise allow local dev.
        cookie_secure = (public_base_url or "").startswith("https://")

    ttl = _env_int("AUTH_SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS)
    if ttl <= 60:
        ttl = 60

    session_secret = _env_str("AUTH_SESSION_SECRET")
    if not session_secret and not is_production:
        # Sessions will not survive a restart; fine for local dev only.
        logger.warning("AUTH_SESSION_SECRET is not set; using an ephemeral signing key")
        session_secret = secrets.token_urlsafe(32)

    return AuthConfig(
        app_env=app_env,
        dev_login_enabled=_env_bool("DEV_LOGIN_ENABLED", not is_production),
        public_base_url=public_base_url,
        session_secret=session_secret,
        session_ttl_seconds=ttl,
        cookie_secure=cookie_secure,
        google_client_id=_env_str("GOOGLE_CLIENT_ID"),
        google_client_secret=_env_str("GOOGLE_CLIENT_SECRET"),
        facebook_app_id=_env_str("FACEBOOK_APP_ID"),
        facebook_app_secret=_env_str("FACEBOOK_APP_SECRET"),
        admin_initial_username=(os.getenv("ADMIN_INITIAL_USERNAME", "") or "admin").strip(),
        admin_initial_password=_env_str("ADMIN_INITIAL_PASSWORD"),
        admin_initial_email=_env_str("ADMIN_INITIAL_EMAIL"),
        login_max_attempts=max(1, _env_int("LOGIN_MAX_ATTEMPTS", 5)),
        login_window_seconds=max(10, _env_int("LOGIN_WINDOW_SECONDS", 300)),
    )
