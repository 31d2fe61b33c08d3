from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from eventopro.auth.exceptions import ConflictError
from eventopro.auth.models import Activity, NewUser, utcnow
from eventopro.storage.memory_store import MemoryActivityLog, MemorySessionStore, MemoryUserStore


def _new(username: str, email: str, **kw) -> NewUser:
    return NewUser(username=username, email=email, **kw)


def test_create_assigns_ids_and_defaults() -> None:
    users = MemoryUserStore()
    a = users.create(_new("alice", "alice@example.com", password="h"))
    b = users.create(_new("bob", "bob@example.com", password="h"))
    assert (a.id, b.id) == (1, 2)
    assert a.role == "user"
    assert a.provider == "local"
    assert a.created_at is not None
    assert users.get_by_username("alice") == a
    assert users.get_by_email("bob@example.com") == b
    assert [u.id for u in users.list()] == [1, 2]


def test_unique_username_email_and_provider_identity() -> None:
    users = MemoryUserStore()
    users.create(_new("alice", "alice@example.com", password="h"))
    users.create(_new("g.user", "g@example.com", provider="google", provider_id="sub-1"))

    with pytest.raises(ConflictError) as e:
        users.create(_new("alice", "other@example.com", password="h"))
    assert e.value.field == "username"

    with pytest.raises(ConflictError) as e:
        users.create(_new("alice2", "alice@example.com", password="h"))
    assert e.value.field == "email"

    with pytest.raises(ConflictError) as e:
        users.create(_new("g.user2", "g2@example.com", provider="google", provider_id="sub-1"))
    assert e.value.field == "provider_id"

    # Same provider_id under another provider is a different identity.
    users.create(_new("f.user", "f@example.com", provider="facebook", provider_id="sub-1"))
    assert len(users.list()) == 3


def test_update_checks_uniqueness_and_allowlist() -> None:
    users = MemoryUserStore()
    alice = users.create(_new("alice", "alice@example.com", password="h"))
    users.create(_new("bob", "bob@example.com", password="h"))

    with pytest.raises(ConflictError):
        users.update(alice.id, username="bob")
    with pytest.raises(ValueError):
        users.update(alice.id, role="admin")

    updated = users.update(alice.id, name="Alice A.", username="alice")
    assert updated is not None and updated.name == "Alice A."
    assert users.update(999, name="x") is None


def test_set_role_touch_login_delete() -> None:
    users = MemoryUserStore()
    alice = users.create(_new("alice", "alice@example.com", password="h"))
    assert alice.last_login_at is None

    users.touch_login(alice.id)
    assert users.get(alice.id).last_login_at is not None

    assert users.set_role(alice.id, "admin").role == "admin"
    assert users.set_role(999, "admin") is None

    assert users.delete(alice.id) is True
    assert users.delete(alice.id) is False
    assert users.get(alice.id) is None


def test_concurrent_creates_for_same_username_only_one_wins() -> None:
    users = MemoryUserStore()
    barrier = threading.Barrier(8)
    wins = []
    conflicts = []

    def worker(i: int) -> None:
        barrier.wait()
        try:
            wins.append(users.create(_new("same", f"same{i}@example.com", password="h")))
        except ConflictError as e:
            conflicts.append(e.field)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(wins) == 1
    assert conflicts == ["username"] * 7
    assert len(users.list()) == 1


def test_session_store_lifecycle() -> None:
    sessions = MemorySessionStore()
    future = utcnow() + timedelta(hours=1)
    sessions.create("t1", 1, future)
    sessions.create("t2", 1, future)
    sessions.create("t3", 2, future)

    assert sessions.get("t1").user_id == 1
    assert sessions.get("missing") is None

    sessions.delete("t1")
    sessions.delete("t1")  # no-op
    assert sessions.get("t1") is None

    assert sessions.delete_for_user(1, keep="t2") == 0
    sessions.create("t4", 1, future)
    assert sessions.delete_for_user(1, keep="t2") == 1
    assert sessions.get("t2") is not None
    assert sessions.get("t3") is not None


def test_session_store_expiry() -> None:
    sessions = MemorySessionStore()
    sessions.create("old", 1, utcnow() - timedelta(seconds=1))
    sessions.create("old2", 1, utcnow() - timedelta(days=1))
    sessions.create("live", 1, utcnow() + timedelta(hours=1))

    assert sessions.get("old") is None
    assert sessions.purge_expired() == 1
    assert sessions.get("live") is not None


def test_activity_log_appends_in_order() -> None:
    log = MemoryActivityLog()
    log.append(Activity(action="register", description="a", user_id=1))
    log.append(Activity(action="login", description="b", user_id=1))
    assert [a.action for a in log.all()] == ["register", "login"]
