from __future__ import annotations

import base64
import hashlib
import re
import secrets

_WHITESPACE = re.compile(r"\s+")


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(secrets.token_bytes(nbytes))


def pkce_challenge(verifier: str) -> str:
    """S256 PKCE challenge for a code verifier."""
    return b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def sanitize_next_path(next_path: str | None) -> str:
    """
    Prevent open-redirects: allow only relative paths like `/events`.
    """
    p = (next_path or "").strip()
    if not p.startswith("/") or p.startswith("//"):
        return "/"
    # Backslashes are normalized to slashes by some browsers (`/\evil.com`).
    if "\\" in p:
        return "/"
    p = p.replace("\r", "").replace("\n", "")
    return p or "/"


def username_from_display_name(display_name: str | None, *, fallback: str) -> str:
    """`Maria da Silva` -> `maria.da.silva`."""
    base = _WHITESPACE.sub(".", (display_name or "").strip()).lower()
    return base or fallback


def synthesize_email(provider: str, provider_id: str) -> str:
    return f"{provider_id}@{provider}.local"
