"""
Pytest config.

Imports resolve from the repo root even when the package is not installed
(e.g. when invoking a global `pytest` entrypoint), so pin it on sys.path.
"""

from __future__ import annotations

import dataclasses
import sys
from pathlib import Path
from typing import Callable

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from eventopro.auth.config import AuthConfig, load_auth_config  # noqa: E402
from eventopro.storage.base import Stores  # noqa: E402
from eventopro.storage.memory_store import memory_stores  # noqa: E402

TEST_SECRET = "test-secret-key-for-testing-purposes-only"


@pytest.fixture(autouse=True)
def _fresh_auth_config():
    """Config is lru_cached from env; never leak one test's env into another."""
    load_auth_config.cache_clear()
    yield
    load_auth_config.cache_clear()


def _base_config() -> AuthConfig:
    return AuthConfig(
        app_env="test",
        dev_login_enabled=True,
        public_base_url="http://testserver",
        session_secret=TEST_SECRET,
        session_ttl_seconds=7 * 24 * 3600,
        cookie_secure=False,
        google_client_id=None,
        google_client_secret=None,
        facebook_app_id=None,
        facebook_app_secret=None,
        admin_initial_username="admin",
        admin_initial_password=None,
        admin_initial_email=None,
        login_max_attempts=5,
        login_window_seconds=300,
    )


@pytest.fixture
def make_config() -> Callable[..., AuthConfig]:
    def _make(**overrides) -> AuthConfig:
        return dataclasses.replace(_base_config(), **overrides)

    return _make


@pytest.fixture
def cfg(make_config) -> AuthConfig:
    return make_config()


@pytest.fixture
def stores() -> Stores:
    return memory_stores()


@pytest.fixture
def make_client(stores):
    """Build a TestClient over an app with the given config and the shared in-memory stores."""
    from fastapi.testclient import TestClient

    from eventopro.api.server import create_app

    def _make(config: AuthConfig) -> TestClient:
        return TestClient(create_app(config, stores), follow_redirects=False)

    return _make


@pytest.fixture
def client(make_client, cfg):
    return make_client(cfg)
