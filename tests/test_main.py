from __future__ import annotations

from unittest.mock import patch

import pytest

import main
from eventopro.db.migrate import Migration, MigrationError, MigrationStatus
from eventopro.storage.memory_store import memory_stores

_PG_ENV = ("POSTGRES_DSN", "POSTGRES_HOST", "POSTGRES_PORT", "POSTGRES_DB", "POSTGRES_USER", "POSTGRES_PASSWORD")


@pytest.fixture
def no_postgres(monkeypatch):
    for name in _PG_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("APP_ENV", "test")


@pytest.fixture
def with_postgres(monkeypatch, no_postgres):
    monkeypatch.setenv("POSTGRES_DSN", "postgresql://eventopro@db/eventopro")


def test_create_admin_without_postgres_refuses(no_postgres, capsys) -> None:
    with patch("eventopro.auth.accounts.bootstrap_admin") as bootstrap:
        assert main.main(["create-admin", "--password", "secret123"]) == 2
    bootstrap.assert_not_called()
    out = capsys.readouterr().out
    assert "Postgres not configured" in out
    assert "Admin ready" not in out


def test_create_admin_writes_to_postgres(with_postgres, capsys) -> None:
    stores = memory_stores()
    with patch("eventopro.storage.pg_store.pg_stores", return_value=stores) as pg:
        assert main.main(["create-admin", "--username", "root", "--password", "secret123"]) == 0
    pg.assert_called_once_with("postgresql://eventopro@db/eventopro")
    assert stores.users.get_by_username("root").role == "admin"
    assert "Admin ready" in capsys.readouterr().out


def test_create_admin_needs_a_password(with_postgres, monkeypatch, capsys) -> None:
    monkeypatch.delenv("ADMIN_INITIAL_PASSWORD", raising=False)
    with patch("eventopro.storage.pg_store.pg_stores", return_value=memory_stores()):
        assert main.main(["create-admin"]) == 2
    assert "Provide --password" in capsys.readouterr().out


def test_create_admin_rejects_weak_password(with_postgres, capsys) -> None:
    stores = memory_stores()
    with patch("eventopro.storage.pg_store.pg_stores", return_value=stores):
        assert main.main(["create-admin", "--password", "123"]) == 1
    assert stores.users.list() == []
    assert "Could not create admin" in capsys.readouterr().out


def test_migrate_without_postgres_refuses(no_postgres) -> None:
    with patch("eventopro.db.migrate.apply_migrations") as apply:
        assert main.main(["migrate"]) == 2
    apply.assert_not_called()


def test_migrate_reports_refusal(with_postgres, capsys) -> None:
    with patch("eventopro.db.migrate.apply_migrations", side_effect=MigrationError("changed on disk: 0001_auth")):
        assert main.main(["migrate"]) == 1
    assert "Migration refused" in capsys.readouterr().out


def test_migrate_status_lists_without_applying(with_postgres, capsys) -> None:
    status = MigrationStatus(
        applied=["0001_auth"],
        pending=[Migration(version="0002_indexes", checksum="c", sql="")],
        modified=[],
        unknown=[],
    )
    with patch("eventopro.db.migrate.migration_status", return_value=status), patch(
        "eventopro.db.migrate.apply_migrations"
    ) as apply:
        assert main.main(["migrate", "--status"]) == 0
    apply.assert_not_called()
    out = capsys.readouterr().out
    assert "applied   0001_auth" in out
    assert "pending   0002_indexes" in out
