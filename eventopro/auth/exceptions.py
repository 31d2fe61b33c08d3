"""Authentication and authorization exceptions.

Raised by the auth core and translated into JSON error responses by the
handler registered in `eventopro.api.server`. Each class carries the HTTP
status it maps to so the handler stays a single function.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base exception for all auth-core errors."""

    status_code = 400

    def __init__(self, message: str = "Authentication error"):
        self.message = message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input; the caller fixes it and retries."""

    status_code = 400

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message)


class ConflictError(AuthError):
    """A unique field (username, email, provider identity) is already taken."""

    status_code = 400

    _MESSAGES = {
        "username": "Username already exists",
        "email": "Email is already in use",
        "provider_id": "This external account is already linked",
    }

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or self._MESSAGES.get(field, f"{field} already exists"))


class AuthFailure(AuthError):
    """Credential mismatch or missing account. The message never says which."""

    status_code = 401

    def __init__(self, message: str = "Invalid username or password"):
        super().__init__(message)


class ExternalProviderError(AuthFailure):
    """The OAuth provider failed or returned malformed data.

    `detail` is for server-side logs only; users see the generic message.
    """

    def __init__(self, provider: str, detail: str = ""):
        self.provider = provider
        self.detail = detail
        super().__init__(f"Sign-in with {provider} failed")


class AuthenticationRequired(AuthError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class AuthorizationDenied(AuthError):
    """Valid identity lacking the required role."""

    status_code = 403

    def __init__(self, message: str = "Access denied. Only administrators can perform this operation."):
        super().__init__(message)


class ProviderMismatchError(AuthError):
    """Password operations on an account that signs in through an external provider."""

    status_code = 400

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"This account signs in with {provider}; use your original provider")


class NotFoundError(AuthError):
    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class DevLoginDisabled(NotFoundError):
    def __init__(self) -> None:
        super().__init__("Not found")


class RateLimitedError(AuthError):
    status_code = 429

    def __init__(self, message: str = "Too many failed login attempts. Please try again later."):
        super().__init__(message)


class ConfigurationError(AuthError):
    """Server-side misconfiguration (missing secret or base URL)."""

    status_code = 500
