"""
OAuth 2.0 clients for the federated sign-in providers.

Google is driven by its OIDC discovery document: authorization code + PKCE,
then the ID token is verified against the provider's JWKS. Facebook has no
ID token in the standard flow, so the profile comes from the Graph API with the
access token.

Every network or validation failure surfaces as ExternalProviderError.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import jwt  # PyJWT
import requests

from eventopro.auth.config import AuthConfig
from eventopro.auth.exceptions import ExternalProviderError
from eventopro.auth.models import PROVIDER_FACEBOOK, PROVIDER_GOOGLE, ExternalProfile

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"
FACEBOOK_GRAPH_VERSION = "v19.0"
FACEBOOK_AUTHORIZE_URL = f"https://www.facebook.com/{FACEBOOK_GRAPH_VERSION}/dialog/oauth"
FACEBOOK_TOKEN_URL = f"https://graph.facebook.com/{FACEBOOK_GRAPH_VERSION}/oauth/access_token"
FACEBOOK_ME_URL = f"https://graph.facebook.com/{FACEBOOK_GRAPH_VERSION}/me"

HTTP_TIMEOUT_SECONDS = 10
_CACHE_TTL_SECONDS = 3600

_discovery_cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}
_jwks_cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}


@dataclass(frozen=True)
class OAuthClient:
    provider: str  # google|facebook
    client_id: str
    client_secret: str

    @property
    def uses_pkce(self) -> bool:
        return self.provider == PROVIDER_GOOGLE


def get_client(cfg: AuthConfig, provider: str) -> Optional[OAuthClient]:
    """Configured client for provider, or None if that provider is not enabled."""
    if provider == PROVIDER_GOOGLE and cfg.google_enabled:
        return OAuthClient(PROVIDER_GOOGLE, cfg.google_client_id or "", cfg.google_client_secret or "")
    if provider == PROVIDER_FACEBOOK and cfg.facebook_enabled:
        return OAuthClient(PROVIDER_FACEBOOK, cfg.facebook_app_id or "", cfg.facebook_app_secret or "")
    return None


def _get_json_cached(cache: Dict[str, Tuple[float, Dict[str, Any]]], url: str) -> Dict[str, Any]:
    ts, cached = cache.get(url, (0.0, {}))
    now = time.time()
    if cached and now - ts < _CACHE_TTL_SECONDS:
        return cached
    r = requests.get(url, timeout=HTTP_TIMEOUT_SECONDS)
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError(f"Invalid JSON document at {url}")
    cache[url] = (now, data)
    return data


def _google_discovery() -> Dict[str, Any]:
    return _get_json_cached(_discovery_cache, GOOGLE_DISCOVERY_URL)


def build_authorize_url(
    client: OAuthClient,
    *,
    redirect_uri: str,
    state: str,
    nonce: str,
    code_challenge: str,
) -> str:
    """
    Build the provider's authorization URL.

    Raises:
        ExternalProviderError: If the provider's discovery document can't be fetched
    """
    if client.provider == PROVIDER_GOOGLE:
        try:
            endpoint = str(_google_discovery().get("authorization_endpoint") or "")
        except (requests.RequestException, ValueError) as e:
            raise ExternalProviderError(client.provider, f"discovery failed: {e}") from e
        if not endpoint:
            raise ExternalProviderError(client.provider, "discovery missing authorization_endpoint")
        params = {
            "client_id": client.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "nonce": nonce,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{endpoint}?{urlencode(params)}"

    params = {
        "client_id": client.client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": "email public_profile",
        "state": state,
    }
    return f"{FACEBOOK_AUTHORIZE_URL}?{urlencode(params)}"


def _post_token(url: str, payload: Dict[str, str]) -> Dict[str, Any]:
    r = requests.post(url, data=payload, timeout=HTTP_TIMEOUT_SECONDS)
    if r.status_code >= 400:
        # Avoid leaking sensitive info; include minimal context.
        raise ValueError(f"Token exchange failed (status={r.status_code})")
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError("Invalid token response")
    return data


def _validate_google_id_token(client: OAuthClient, id_token: str, expected_nonce: str) -> Dict[str, Any]:
    disc = _google_discovery()
    issuer = str(disc.get("issuer") or "")
    jwks_uri = str(disc.get("jwks_uri") or "")
    if not issuer or not jwks_uri:
        raise ValueError("OIDC discovery missing issuer/jwks_uri")

    kid = str(jwt.get_unverified_header(id_token).get("kid") or "")
    if not kid:
        raise ValueError("ID token missing kid")

    keys = _get_json_cached(_jwks_cache, jwks_uri).get("keys")
    if not isinstance(keys, list):
        raise ValueError("Invalid JWKS keys")
    jwk = next((k for k in keys if isinstance(k, dict) and str(k.get("kid") or "") == kid), None)
    if jwk is None:
        raise ValueError("Unknown signing key (kid)")

    key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk))
    claims = jwt.decode(
        id_token,
        key=key,
        algorithms=["RS256"],
        audience=client.client_id,
        issuer=issuer,
        options={"require": ["exp", "iat", "iss", "aud", "sub"]},
    )
    if not isinstance(claims, dict):
        raise ValueError("Invalid ID token claims")

    nonce = str(claims.get("nonce") or "")
    if not nonce or nonce != expected_nonce:
        raise ValueError("Nonce mismatch")

    # Unverified emails are dropped rather than trusted; provisioning synthesizes one.
    if claims.get("email_verified") is False:
        claims = {k: v for k, v in claims.items() if k != "email"}
    return claims


def _google_profile(client: OAuthClient, *, redirect_uri: str, code: str, code_verifier: str, nonce: str):
    disc = _google_discovery()
    token_endpoint = str(disc.get("token_endpoint") or "")
    if not token_endpoint:
        raise ValueError("OIDC discovery missing token_endpoint")
    tokens = _post_token(
        token_endpoint,
        {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        },
    )
    id_token = str(tokens.get("id_token") or "").strip()
    if not id_token:
        raise ValueError("Missing id_token in token response")
    claims = _validate_google_id_token(client, id_token, nonce)
    return ExternalProfile(
        provider=PROVIDER_GOOGLE,
        provider_id=str(claims["sub"]),
        display_name=str(claims.get("name") or "").strip() or None,
        email=str(claims.get("email") or "").strip().lower() or None,
        avatar_url=str(claims.get("picture") or "").strip() or None,
    )


def _facebook_profile(client: OAuthClient, *, redirect_uri: str, code: str):
    tokens = _post_token(
        FACEBOOK_TOKEN_URL,
        {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "redirect_uri": redirect_uri,
            "code": code,
        },
    )
    access_token = str(tokens.get("access_token") or "").strip()
    if not access_token:
        raise ValueError("Missing access_token in token response")

    r = requests.get(
        FACEBOOK_ME_URL,
        params={"fields": "id,name,email,picture", "access_token": access_token},
        timeout=HTTP_TIMEOUT_SECONDS,
    )
    r.raise_for_status()
    me = r.json()
    if not isinstance(me, dict) or not me.get("id"):
        raise ValueError("Invalid Graph API profile")

    picture = me.get("picture")
    avatar = None
    if isinstance(picture, dict):
        avatar = (picture.get("data") or {}).get("url")
    return ExternalProfile(
        provider=PROVIDER_FACEBOOK,
        provider_id=str(me["id"]),
        display_name=str(me.get("name") or "").strip() or None,
        email=str(me.get("email") or "").strip().lower() or None,
        avatar_url=str(avatar) if avatar else None,
    )


def fetch_profile(
    client: OAuthClient,
    *,
    redirect_uri: str,
    code: str,
    code_verifier: str = "",
    nonce: str = "",
) -> ExternalProfile:
    """
    Exchange the authorization code and return the external identity.

    Raises:
        ExternalProviderError: On transport errors, timeouts, HTTP errors, malformed
            responses or a token that fails validation
    """
    try:
        if client.provider == PROVIDER_GOOGLE:
            return _google_profile(client, redirect_uri=redirect_uri, code=code, code_verifier=code_verifier, nonce=nonce)
        return _facebook_profile(client, redirect_uri=redirect_uri, code=code)
    except (requests.RequestException, ValueError, KeyError, jwt.PyJWTError) as e:
        raise ExternalProviderError(client.provider, f"{type(e).__name__}: {e}") from e
