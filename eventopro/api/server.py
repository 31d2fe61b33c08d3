"""
EventoPro auth API.

Session middleware, sign-in/sign-out endpoints, account self-service and the
admin-only user management routes. Event, attendee and dashboard routes live
in other services and reuse `require_user` / `require_admin` from
`eventopro.auth.deps`.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from eventopro.auth.accounts import bootstrap_admin, change_password, register_local, update_profile
from eventopro.auth.activity import record_activity
from eventopro.auth.config import AuthConfig, load_auth_config
from eventopro.auth.deps import authenticate_request, current_user, get_stores, require_admin, require_user
from eventopro.auth.dev import authenticate_dev
from eventopro.auth.exceptions import (
    AuthError,
    AuthFailure,
    ConfigurationError,
    ExternalProviderError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from eventopro.auth.federated import authenticate_federated
from eventopro.auth.local import authenticate_local
from eventopro.auth.models import User
from eventopro.auth.oauth import build_authorize_url, fetch_profile, get_client
from eventopro.auth.rate_limit import RateLimiter
from eventopro.auth.session import (
    clear_session_cookie_kwargs,
    create_session,
    destroy_session,
    session_cookie_kwargs,
    session_cookie_name,
    unsign_token,
)
from eventopro.auth.util import pkce_challenge, random_token, sanitize_next_path
from eventopro.authz.policy import LOGIN_PATH, promote_to_admin
from eventopro.db.config import build_postgres_dsn, load_db_config
from eventopro.storage.base import Stores
from eventopro.storage.memory_store import memory_stores
from eventopro.storage.pg_store import pg_stores

logger = logging.getLogger(__name__)

_OAUTH_COOKIE_PATH = "/auth"
_OAUTH_TTL_SECONDS = 10 * 60
_OAUTH_COOKIES = ("eventopro_oauth_state", "eventopro_oauth_nonce", "eventopro_oauth_verifier", "eventopro_oauth_next")


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str
    name: Optional[str] = None


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias="currentPassword")
    new_password: str = Field(alias="newPassword")


class ProfileUpdateRequest(BaseModel):
    # No role, provider or password here; unknown keys are ignored.
    model_config = ConfigDict(populate_by_name=True)

    username: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")


def build_stores(cfg: AuthConfig) -> Stores:
    """Postgres stores when configured; in-memory stores otherwise (never in production)."""
    dsn = build_postgres_dsn(load_db_config())
    if dsn:
        return pg_stores(dsn)
    if cfg.is_production:
        raise RuntimeError("POSTGRES_DSN (or POSTGRES_* settings) is required when APP_ENV=production")
    logger.warning("Postgres not configured; using in-memory user/session stores (data is lost on restart)")
    return memory_stores()


def _oauth_cookie_kwargs(cfg: AuthConfig, *, key: str, value: str, max_age: int) -> dict:
    return {
        "key": key,
        "value": value,
        "max_age": max_age,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": _OAUTH_COOKIE_PATH,
    }


def _clear_oauth_cookies(cfg: AuthConfig, resp) -> None:
    for key in _OAUTH_COOKIES:
        resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=key, value="", max_age=0))


def _public_base_url(cfg: AuthConfig) -> str:
    base = (cfg.public_base_url or "").strip().rstrip("/")
    if not base:
        raise ConfigurationError("AUTH_PUBLIC_BASE_URL is required for OAuth sign-in")
    return base


def _start_session(request: Request, cfg: AuthConfig, stores: Stores, user: User, resp) -> None:
    """Replace any session the client already holds with a fresh one for user."""
    destroy_session(cfg, stores, request.cookies.get(session_cookie_name(cfg)))
    value = create_session(cfg, stores, user)
    if not value:
        raise ConfigurationError("Session signing is not configured (AUTH_SESSION_SECRET)")
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**session_cookie_kwargs(cfg, value))


def _user_response(user: User, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=user.public_dict())
    resp.headers["Cache-Control"] = "no-store"
    return resp


def create_app(cfg: Optional[AuthConfig] = None, stores: Optional[Stores] = None) -> FastAPI:
    cfg = cfg or load_auth_config()
    app = FastAPI(title="EventoPro auth API")
    app.state.auth_config = cfg
    app.state.stores = stores if stores is not None else build_stores(cfg)
    app.state.rate_limiter = RateLimiter(cfg.login_max_attempts, cfg.login_window_seconds)

    @app.exception_handler(AuthError)
    async def _auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        if isinstance(exc, ExternalProviderError):
            logger.warning("OAuth provider %s failed: %s", exc.provider, exc.detail)
        elif exc.status_code >= 500:
            logger.error("%s %s - %s", request.method, request.url.path, exc.message)
        # No WWW-Authenticate on 401: browsers would pop a basic-auth dialog over the login page.
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        detail = f"{loc}: {first.get('msg')}" if loc else "Invalid request"
        return JSONResponse(status_code=400, content={"detail": detail})

    @app.on_event("startup")
    def _startup_maybe_migrate_db() -> None:
        """Apply SQL migrations when DB_AUTO_MIGRATE=1. Never prevents startup."""
        from eventopro.db.migrate import maybe_auto_migrate

        did_attempt, msg = maybe_auto_migrate()
        if did_attempt:
            logger.info("DB migrations: %s", msg)

    @app.on_event("startup")
    def _startup_initialize_admin_user() -> None:
        """Create or promote the initial admin when ADMIN_INITIAL_PASSWORD is set."""
        if not cfg.admin_initial_password:
            return
        try:
            bootstrap_admin(
                app.state.stores,
                username=cfg.admin_initial_username,
                password=cfg.admin_initial_password,
                email=cfg.admin_initial_email,
            )
            logger.info("Admin user initialization check completed")
        except Exception as e:
            logger.warning("Admin user initialization failed: %s", str(e))

    @app.on_event("startup")
    def _startup_purge_expired_sessions() -> None:
        try:
            n = app.state.stores.sessions.purge_expired()
            if n:
                logger.info("Purged %d expired session(s)", n)
        except Exception as e:
            logger.warning("Expired session purge failed: %s", str(e))

    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        """Attach the session's user (or None) to request.state and log timing."""
        start_time = time.time()
        try:
            request.state.user = await run_in_threadpool(authenticate_request, request)
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
            raise
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    @app.get("/api/auth/mode")
    def auth_mode() -> Dict[str, Any]:
        """Sign-in options for the login page. Public; returns no secrets."""
        return {
            "ok": True,
            "localEnabled": True,
            "providers": [{"name": p, "loginUrl": f"/auth/{p}"} for p in cfg.enabled_providers()],
            "devLoginEnabled": cfg.dev_login_allowed,
        }

    @app.post("/api/register")
    def register(request: Request, body: RegisterRequest) -> JSONResponse:
        stores = get_stores(request)
        user = register_local(
            stores,
            username=body.username,
            email=body.email,
            password=body.password,
            name=body.name,
        )
        resp = _user_response(user, status_code=201)
        _start_session(request, cfg, stores, user, resp)
        return resp

    @app.post("/api/login")
    def login(request: Request, body: LoginRequest) -> JSONResponse:
        """Local username/password sign-in, rate-limited per username."""
        stores = get_stores(request)
        limiter: RateLimiter = request.app.state.rate_limiter
        username = body.username.strip()

        allowed, _ = limiter.check_and_increment(username)
        if not allowed:
            raise RateLimitedError()
        # A failed attempt keeps its slot until the window slides past it.
        result = authenticate_local(stores, username, body.password)
        limiter.reset(username)

        resp = _user_response(result.user)
        _start_session(request, cfg, stores, result.user, resp)
        return resp

    @app.post("/api/logout")
    def logout(request: Request) -> JSONResponse:
        """Idempotent: succeeds with or without a live session."""
        stores = get_stores(request)
        user = current_user(request)
        destroy_session(cfg, stores, request.cookies.get(session_cookie_name(cfg)))
        if user is not None:
            record_activity(stores.activities, "logout", f"User logged out: {user.username}", user_id=user.id)

        resp = JSONResponse(content={"ok": True})
        resp.headers["Cache-Control"] = "no-store"
        resp.set_cookie(**clear_session_cookie_kwargs(cfg))
        return resp

    @app.get("/api/user")
    def me(user: User = Depends(require_user)) -> JSONResponse:
        return _user_response(user)

    @app.patch("/api/user")
    def patch_me(request: Request, body: ProfileUpdateRequest, user: User = Depends(require_user)) -> JSONResponse:
        updated = update_profile(get_stores(request), user, body.model_dump(exclude_unset=True))
        return _user_response(updated)

    @app.post("/api/user/password")
    def post_password(
        request: Request, body: ChangePasswordRequest, user: User = Depends(require_user)
    ) -> Dict[str, Any]:
        change_password(
            get_stores(request),
            user,
            current_password=body.current_password,
            new_password=body.new_password,
            keep_session=unsign_token(cfg, request.cookies.get(session_cookie_name(cfg))),
        )
        return {"ok": True, "message": "Password changed"}

    @app.post("/api/user/{user_id}/make-admin")
    def make_admin(request: Request, user_id: int) -> Dict[str, Any]:
        # promote_to_admin enforces the admin policy itself.
        updated = promote_to_admin(get_stores(request), current_user(request), user_id)
        return {
            "message": "User promoted to administrator",
            "user": {"id": updated.id, "username": updated.username, "role": updated.role},
        }

    @app.get("/api/users")
    def list_users(request: Request, _admin: User = Depends(require_admin)) -> List[Dict[str, Any]]:
        return [u.public_dict() for u in get_stores(request).users.list()]

    @app.delete("/api/users/{user_id}")
    def delete_user(request: Request, user_id: int, admin: User = Depends(require_admin)) -> Dict[str, Any]:
        if user_id == admin.id:
            raise ValidationError("Administrators cannot delete their own account")
        stores = get_stores(request)
        stores.sessions.delete_for_user(user_id)
        if not stores.users.delete(user_id):
            raise NotFoundError("User not found")
        logger.info("user_id=%s deleted user_id=%s", admin.id, user_id)
        return {"ok": True}

    @app.get("/auth/dev/login")
    def dev_login(
        request: Request,
        admin: bool = Query(False),
        email: Optional[str] = Query(None),
        name: Optional[str] = Query(None),
    ):
        """Credential-free sign-in for local development. 404 in production."""
        stores = get_stores(request)
        result = authenticate_dev(cfg, stores, email=email, name=name, admin=admin)
        resp = RedirectResponse(url="/", status_code=302)
        _start_session(request, cfg, stores, result.user, resp)
        return resp

    @app.get("/auth/{provider}")
    def oauth_login(provider: str, next_path: str = Query("/", alias="next")):
        """Start the OAuth authorization-code flow for provider."""
        client = get_client(cfg, provider)
        if client is None:
            raise NotFoundError("Unknown sign-in provider")

        redirect_uri = f"{_public_base_url(cfg)}/auth/{provider}/callback"
        state = random_token(32)
        nonce = random_token(32)
        verifier = random_token(32)  # 43 chars base64url -> valid PKCE verifier
        url = build_authorize_url(
            client,
            redirect_uri=redirect_uri,
            state=state,
            nonce=nonce,
            code_challenge=pkce_challenge(verifier),
        )

        resp = RedirectResponse(url=url, status_code=302)
        resp.headers["Cache-Control"] = "no-store"
        for key, value in (
            ("eventopro_oauth_state", state),
            ("eventopro_oauth_nonce", nonce),
            ("eventopro_oauth_verifier", verifier),
            ("eventopro_oauth_next", sanitize_next_path(next_path)),
        ):
            resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=key, value=value, max_age=_OAUTH_TTL_SECONDS))
        return resp

    @app.get("/auth/{provider}/callback")
    def oauth_callback(
        request: Request,
        provider: str,
        code: Optional[str] = Query(None),
        state: Optional[str] = Query(None),
        error: Optional[str] = Query(None),
    ):
        """Finish the OAuth flow: verify state, fetch the profile, find/provision the user."""
        client = get_client(cfg, provider)
        if client is None:
            raise NotFoundError("Unknown sign-in provider")
        stores = get_stores(request)

        cookie_state = (request.cookies.get("eventopro_oauth_state") or "").strip()
        cookie_nonce = (request.cookies.get("eventopro_oauth_nonce") or "").strip()
        cookie_verifier = (request.cookies.get("eventopro_oauth_verifier") or "").strip()
        next_path = sanitize_next_path(request.cookies.get("eventopro_oauth_next"))

        try:
            if error:
                raise ExternalProviderError(provider, f"provider returned error={error}")
            if not code or not cookie_state or cookie_state != (state or "").strip():
                raise AuthFailure("Invalid OAuth state")
            profile = fetch_profile(
                client,
                redirect_uri=f"{_public_base_url(cfg)}/auth/{provider}/callback",
                code=code,
                code_verifier=cookie_verifier,
                nonce=cookie_nonce,
            )
            result = authenticate_federated(stores, profile)
        except AuthFailure as e:
            if isinstance(e, ExternalProviderError):
                logger.warning("OAuth callback for %s failed: %s", provider, e.detail)
            else:
                logger.info("OAuth callback for %s rejected: %s", provider, e.message)
            resp = RedirectResponse(url=f"{LOGIN_PATH}?error={provider}", status_code=302)
            resp.headers["Cache-Control"] = "no-store"
            _clear_oauth_cookies(cfg, resp)
            return resp

        resp = RedirectResponse(url=next_path, status_code=302)
        _start_session(request, cfg, stores, result.user, resp)
        _clear_oauth_cookies(cfg, resp)
        return resp

    return app
