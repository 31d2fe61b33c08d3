from __future__ import annotations

import pytest

from eventopro.auth.util import pkce_challenge, random_token, sanitize_next_path, username_from_display_name


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("/events", "/events"),
        ("/events?id=3", "/events?id=3"),
        (None, "/"),
        ("", "/"),
        ("https://evil.example", "/"),
        ("//evil.example", "/"),
        ("/\\evil.example", "/"),
    ],
)
def test_sanitize_next_path(raw, expected) -> None:
    assert sanitize_next_path(raw) == expected


def test_username_from_display_name() -> None:
    assert username_from_display_name("Maria  da\tSilva", fallback="x") == "maria.da.silva"
    assert username_from_display_name("   ", fallback="google.1") == "google.1"


def test_pkce_challenge_known_vector() -> None:
    # RFC 7636 appendix B.
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert pkce_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_random_tokens_are_unique_and_urlsafe() -> None:
    tokens = {random_token() for _ in range(50)}
    assert len(tokens) == 50
    assert all("=" not in t and "+" not in t and "/" not in t for t in tokens)
