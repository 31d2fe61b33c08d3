from __future__ import annotations

import json
import time
from unittest.mock import MagicMock, patch

import jwt
import pytest
import requests
from cryptography.hazmat.primitives.asymmetric import rsa

from eventopro.auth import oauth
from eventopro.auth.exceptions import AuthFailure, ExternalProviderError
from eventopro.auth.oauth import OAuthClient, build_authorize_url, fetch_profile, get_client

ISSUER = "https://accounts.google.com"
JWKS_URI = "https://www.googleapis.com/oauth2/v3/certs"
DISCOVERY = {
    "issuer": ISSUER,
    "authorization_endpoint": "https://accounts.google.com/o/oauth2/v2/auth",
    "token_endpoint": "https://oauth2.googleapis.com/token",
    "jwks_uri": JWKS_URI,
}
GOOGLE = OAuthClient("google", "client-123", "shh")
FACEBOOK = OAuthClient("facebook", "app-123", "shh")


@pytest.fixture(autouse=True)
def _clear_oauth_caches():
    oauth._discovery_cache.clear()
    oauth._jwks_cache.clear()
    yield
    oauth._discovery_cache.clear()
    oauth._jwks_cache.clear()


@pytest.fixture(scope="module")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _jwks(private_key, kid: str = "k1") -> dict:
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk["kid"] = kid
    return {"keys": [jwk]}


def _id_token(private_key, **overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": ISSUER,
        "aud": GOOGLE.client_id,
        "sub": "google-sub-1",
        "iat": now,
        "exp": now + 300,
        "nonce": "n-1",
        "email": "Maria@Example.com",
        "email_verified": True,
        "name": "Maria da Silva",
        "picture": "https://img.example/m.png",
    }
    claims.update(overrides)
    return jwt.encode(claims, private_key, algorithm="RS256", headers={"kid": "k1"})


def _response(payload, status_code: int = 200) -> MagicMock:
    r = MagicMock()
    r.status_code = status_code
    r.json.return_value = payload
    if status_code >= 400:
        r.raise_for_status.side_effect = requests.HTTPError(f"{status_code}")
    return r


def _google_get(private_key):
    def _get(url, **_kwargs):
        if url == oauth.GOOGLE_DISCOVERY_URL:
            return _response(DISCOVERY)
        if url == JWKS_URI:
            return _response(_jwks(private_key))
        raise AssertionError(f"unexpected GET {url}")

    return _get


def test_get_client_only_for_enabled_providers(make_config) -> None:
    cfg = make_config(google_client_id="gid", google_client_secret="gs")
    assert get_client(cfg, "google") == OAuthClient("google", "gid", "gs")
    assert get_client(cfg, "facebook") is None
    assert get_client(cfg, "twitter") is None


def test_google_authorize_url_uses_pkce_and_nonce() -> None:
    with patch("eventopro.auth.oauth.requests.get", return_value=_response(DISCOVERY)):
        url = build_authorize_url(
            GOOGLE, redirect_uri="https://app.example/auth/google/callback", state="s", nonce="n", code_challenge="c"
        )
    assert url.startswith(DISCOVERY["authorization_endpoint"] + "?")
    assert "code_challenge=c" in url
    assert "code_challenge_method=S256" in url
    assert "nonce=n" in url
    assert "state=s" in url


def test_facebook_authorize_url_needs_no_network() -> None:
    with patch("eventopro.auth.oauth.requests.get") as get:
        url = build_authorize_url(
            FACEBOOK, redirect_uri="https://app.example/auth/facebook/callback", state="s", nonce="n", code_challenge="c"
        )
    get.assert_not_called()
    assert url.startswith(oauth.FACEBOOK_AUTHORIZE_URL)
    assert "code_challenge" not in url


def test_discovery_failure_is_provider_error() -> None:
    with patch("eventopro.auth.oauth.requests.get", side_effect=requests.ConnectionError("down")):
        with pytest.raises(ExternalProviderError):
            build_authorize_url(GOOGLE, redirect_uri="r", state="s", nonce="n", code_challenge="c")


def test_google_profile_from_verified_id_token(signing_key) -> None:
    token = _id_token(signing_key)
    with (
        patch("eventopro.auth.oauth.requests.get", side_effect=_google_get(signing_key)),
        patch("eventopro.auth.oauth.requests.post", return_value=_response({"id_token": token})) as post,
    ):
        profile = fetch_profile(GOOGLE, redirect_uri="r", code="abc", code_verifier="v", nonce="n-1")

    assert profile.provider == "google"
    assert profile.provider_id == "google-sub-1"
    assert profile.display_name == "Maria da Silva"
    assert profile.email == "maria@example.com"
    assert profile.avatar_url == "https://img.example/m.png"
    assert post.call_args.kwargs["data"]["code_verifier"] == "v"
    assert post.call_args.kwargs["timeout"] == oauth.HTTP_TIMEOUT_SECONDS


def test_google_unverified_email_is_dropped(signing_key) -> None:
    token = _id_token(signing_key, email_verified=False)
    with (
        patch("eventopro.auth.oauth.requests.get", side_effect=_google_get(signing_key)),
        patch("eventopro.auth.oauth.requests.post", return_value=_response({"id_token": token})),
    ):
        profile = fetch_profile(GOOGLE, redirect_uri="r", code="abc", nonce="n-1")
    assert profile.email is None


@pytest.mark.parametrize(
    "overrides,nonce",
    [
        ({}, "other-nonce"),
        ({"aud": "someone-else"}, "n-1"),
        ({"iss": "https://evil.example"}, "n-1"),
        ({"exp": int(time.time()) - 3600}, "n-1"),
    ],
)
def test_google_rejects_invalid_id_token(signing_key, overrides, nonce) -> None:
    token = _id_token(signing_key, **overrides)
    with (
        patch("eventopro.auth.oauth.requests.get", side_effect=_google_get(signing_key)),
        patch("eventopro.auth.oauth.requests.post", return_value=_response({"id_token": token})),
    ):
        with pytest.raises(ExternalProviderError):
            fetch_profile(GOOGLE, redirect_uri="r", code="abc", nonce=nonce)


def test_token_from_unknown_key_is_rejected(signing_key) -> None:
    other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    token = _id_token(other_key)
    with (
        patch("eventopro.auth.oauth.requests.get", side_effect=_google_get(signing_key)),
        patch("eventopro.auth.oauth.requests.post", return_value=_response({"id_token": token})),
    ):
        with pytest.raises(ExternalProviderError):
            fetch_profile(GOOGLE, redirect_uri="r", code="abc", nonce="n-1")


def test_token_exchange_timeout_is_provider_error(signing_key) -> None:
    with (
        patch("eventopro.auth.oauth.requests.get", side_effect=_google_get(signing_key)),
        patch("eventopro.auth.oauth.requests.post", side_effect=requests.Timeout("read timed out")),
    ):
        with pytest.raises(ExternalProviderError) as e:
            fetch_profile(GOOGLE, redirect_uri="r", code="abc", nonce="n-1")
    assert isinstance(e.value, AuthFailure)
    assert e.value.message == "Sign-in with google failed"
    assert "Timeout" in e.value.detail


def test_token_exchange_http_error_is_provider_error() -> None:
    with patch("eventopro.auth.oauth.requests.post", return_value=_response({"error": "invalid_grant"}, 400)):
        with pytest.raises(ExternalProviderError):
            fetch_profile(FACEBOOK, redirect_uri="r", code="abc")


def test_facebook_profile_from_graph_api() -> None:
    me = {
        "id": "fb-42",
        "name": "Joao Souza",
        "email": "joao@example.com",
        "picture": {"data": {"url": "https://img.example/j.png"}},
    }
    with (
        patch("eventopro.auth.oauth.requests.post", return_value=_response({"access_token": "at"})),
        patch("eventopro.auth.oauth.requests.get", return_value=_response(me)) as get,
    ):
        profile = fetch_profile(FACEBOOK, redirect_uri="r", code="abc")

    assert profile.provider == "facebook"
    assert profile.provider_id == "fb-42"
    assert profile.display_name == "Joao Souza"
    assert profile.avatar_url == "https://img.example/j.png"
    assert get.call_args.kwargs["params"]["access_token"] == "at"


def test_facebook_malformed_profile_is_provider_error() -> None:
    with (
        patch("eventopro.auth.oauth.requests.post", return_value=_response({"access_token": "at"})),
        patch("eventopro.auth.oauth.requests.get", return_value=_response({"name": "no id"})),
    ):
        with pytest.raises(ExternalProviderError):
            fetch_profile(FACEBOOK, redirect_uri="r", code="abc")
