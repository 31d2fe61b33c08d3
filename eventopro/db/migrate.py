"""
Schema migrations for the auth tables.

Files under `migrations/` are named `NNNN_label.sql` and run in name order,
each in its own transaction. Every applied file is recorded in
`schema_migrations` together with its SHA-256, and a file edited after it was
applied stops the run.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import psycopg

from eventopro.db.config import DbConfig, build_postgres_dsn, load_db_config

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# Shared by every app instance; pg_advisory_lock takes a bigint.
MIGRATION_LOCK_KEY = 470215593310

_FILENAME_RE = re.compile(r"^\d{4}_[a-z0-9_]+\.sql$")

Connector = Callable[[str], Any]


class MigrationError(RuntimeError):
    """Migration files on disk and the recorded history disagree."""


@dataclass(frozen=True)
class Migration:
    version: str  # file stem, e.g. "0001_auth"
    checksum: str
    sql: str

    @classmethod
    def from_file(cls, path: Path) -> "Migration":
        if not _FILENAME_RE.match(path.name):
            raise MigrationError(f"Bad migration file name: {path.name} (expected NNNN_label.sql)")
        raw = path.read_bytes()
        return cls(version=path.stem, checksum=hashlib.sha256(raw).hexdigest(), sql=raw.decode("utf-8"))


@dataclass(frozen=True)
class MigrationStatus:
    applied: List[str]
    pending: List[Migration]
    modified: List[str]
    unknown: List[str]  # recorded in the database but gone from disk

    @property
    def up_to_date(self) -> bool:
        return not self.pending and not self.modified


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    if not directory.is_dir():
        return []
    migrations = [Migration.from_file(p) for p in sorted(directory.glob("*.sql"))]
    prefixes = [m.version[:4] for m in migrations]
    dupes = sorted({p for p in prefixes if prefixes.count(p) > 1})
    if dupes:
        raise MigrationError(f"Duplicate migration number(s): {', '.join(dupes)}")
    return migrations


def compare_history(recorded: Mapping[str, str], available: Sequence[Migration]) -> MigrationStatus:
    """Match the recorded {version: checksum} history against the files on disk."""
    applied: List[str] = []
    pending: List[Migration] = []
    modified: List[str] = []
    for m in available:
        checksum = recorded.get(m.version)
        if checksum is None:
            pending.append(m)
        elif checksum != m.checksum:
            modified.append(m.version)
        else:
            applied.append(m.version)
    on_disk = {m.version for m in available}
    unknown = sorted(v for v in recorded if v not in on_disk)
    return MigrationStatus(applied=applied, pending=pending, modified=modified, unknown=unknown)


def _read_history(conn) -> dict:
    rows = conn.execute("SELECT version, checksum FROM schema_migrations").fetchall()
    return {str(version): str(checksum) for version, checksum in rows}


@contextlib.contextmanager
def _advisory_lock(conn) -> Iterator[None]:
    conn.execute("SELECT pg_advisory_lock(%s)", (MIGRATION_LOCK_KEY,))
    try:
        yield
    finally:
        conn.execute("SELECT pg_advisory_unlock(%s)", (MIGRATION_LOCK_KEY,))


def migration_status(
    *,
    dsn: str,
    migrations: Optional[Iterable[Migration]] = None,
    connect: Optional[Connector] = None,
) -> MigrationStatus:
    """Report applied and pending migrations without changing the database."""
    available = list(migrations) if migrations is not None else load_migrations()
    with (connect or psycopg.connect)(dsn) as conn:
        row = conn.execute("SELECT to_regclass('schema_migrations')").fetchone()
        recorded = _read_history(conn) if row and row[0] else {}
    return compare_history(recorded, available)


def apply_migrations(
    *,
    dsn: str,
    migrations: Optional[Iterable[Migration]] = None,
    connect: Optional[Connector] = None,
) -> Tuple[int, List[str]]:
    """
    Apply pending migrations under the advisory lock.

    Returns: (applied_count, applied_versions)

    Raises:
        MigrationError: An already-applied file was edited afterwards
    """
    available = list(migrations) if migrations is not None else load_migrations()
    done: List[str] = []

    with (connect or psycopg.connect)(dsn) as conn, _advisory_lock(conn):
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations ("
            " version text PRIMARY KEY,"
            " checksum text NOT NULL,"
            " applied_at timestamptz NOT NULL DEFAULT now())"
        )
        status = compare_history(_read_history(conn), available)
        if status.modified:
            raise MigrationError(f"Applied migration(s) changed on disk: {', '.join(status.modified)}")
        for version in status.unknown:
            logger.warning("Migration %s is recorded in the database but missing on disk", version)

        for m in status.pending:
            with conn.transaction():
                conn.execute(m.sql)
                conn.execute(
                    "INSERT INTO schema_migrations (version, checksum) VALUES (%s, %s)",
                    (m.version, m.checksum),
                )
            logger.info("Applied migration %s", m.version)
            done.append(m.version)

    return len(done), done


def maybe_auto_migrate(cfg: Optional[DbConfig] = None) -> Tuple[bool, str]:
    """
    Startup hook: migrate when DB_AUTO_MIGRATE=1 and Postgres is configured.

    Returns: (did_attempt, message)
    """
    cfg = cfg or load_db_config()
    if not cfg.db_auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    dsn = build_postgres_dsn(cfg)
    if not dsn:
        return False, "Postgres DSN not configured"
    try:
        n, versions = apply_migrations(dsn=dsn)
    except (psycopg.Error, MigrationError) as e:
        return True, f"Migration failed: {e}"
    if n:
        return True, f"Applied {n} migration(s): {', '.join(versions)}"
    return True, "No pending migrations"
