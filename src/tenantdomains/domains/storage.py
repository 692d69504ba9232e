"""Storage for tenant domain records.

Two backends share the ``DomainStore`` interface:

- ``JSONDomainStore``: a JSON file, suitable for self-hosted deployments.
- ``SQLiteDomainStore``: a SQLite database whose schema enforces hostname
  uniqueness and the single-primary-per-tenant rule itself.

Every compound operation (create with primary, primary swap) is atomic: it
either fully applies or leaves the store untouched.

Storage file format (domains.json):
    {
        "domains": {
            "3f2c...": {
                "id": "3f2c...",
                "tenant_id": "tenant-1",
                "hostname": "app.acme.com",
                "is_primary": true,
                "verify_token": "pmo-verify-9a1b...",
                "verified": true,
                "verified_at": "2024-01-15T10:30:00+00:00",
                "ssl_status": "ACTIVE",
                "ssl_expires_at": "2024-04-14T10:30:02+00:00",
                "certificate_path": "certs/app.acme.com.pem",
                "created_at": "2024-01-15T10:00:00+00:00"
            }
        }
    }
"""

from __future__ import annotations

import asyncio
import fcntl
import json
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

import structlog

from tenantdomains.domains.errors import DuplicateHostnameError, InvariantViolationError

if TYPE_CHECKING:
    from tenantdomains.core.config import DomainsConfig

logger = structlog.get_logger()


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SslStatus(str, Enum):
    """Certificate state of a domain.

    ``EXPIRED`` is only ever reported, never stored.
    """

    PENDING = "PENDING"
    PROVISIONING = "PROVISIONING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


@dataclass
class DomainRecord:
    """A custom hostname claimed by a tenant."""

    tenant_id: str
    hostname: str
    verify_token: str
    id: str = field(default_factory=_new_id)
    is_primary: bool = False
    verified: bool = False
    verified_at: datetime | None = None
    ssl_status: SslStatus = SslStatus.PENDING
    ssl_expires_at: datetime | None = None
    certificate_path: str | None = None
    created_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "hostname": self.hostname,
            "is_primary": self.is_primary,
            "verify_token": self.verify_token,
            "verified": self.verified,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "ssl_status": self.ssl_status.value,
            "ssl_expires_at": self.ssl_expires_at.isoformat() if self.ssl_expires_at else None,
            "certificate_path": self.certificate_path,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainRecord:
        """Create from dictionary (JSON deserialization)."""
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            hostname=data["hostname"],
            verify_token=data["verify_token"],
            is_primary=bool(data.get("is_primary", False)),
            verified=bool(data.get("verified", False)),
            verified_at=_parse_dt(data.get("verified_at")),
            ssl_status=SslStatus(data.get("ssl_status", SslStatus.PENDING.value)),
            ssl_expires_at=_parse_dt(data.get("ssl_expires_at")),
            certificate_path=data.get("certificate_path"),
            created_at=_parse_dt(data.get("created_at")) or _utc_now(),
        )


_MUTABLE_FIELDS = frozenset(
    {"verified", "verified_at", "ssl_status", "ssl_expires_at", "certificate_path"}
)


def _check_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")


def sort_for_listing(records: list[DomainRecord]) -> list[DomainRecord]:
    """Primary domain first, then creation order."""
    return sorted(records, key=lambda r: (not r.is_primary, r.created_at))


class DomainStore(ABC):
    """Persistent store for domain records.

    Guarantees read-your-writes and atomic compound operations. ``update`` only
    touches verification and certificate fields; ``is_primary`` changes go
    through ``create`` and ``set_primary`` so the swap stays atomic.
    """

    @abstractmethod
    async def create(self, record: DomainRecord) -> DomainRecord:
        """Insert a record.

        If ``record.is_primary`` is set, the tenant's current primary is cleared
        in the same atomic step.

        Raises:
            DuplicateHostnameError: If the hostname is already stored.
        """

    @abstractmethod
    async def get(self, domain_id: str) -> DomainRecord | None:
        """Get a record by id."""

    @abstractmethod
    async def get_by_hostname(self, hostname: str) -> DomainRecord | None:
        """Get a record by normalized hostname."""

    @abstractmethod
    async def list_by_tenant(self, tenant_id: str) -> list[DomainRecord]:
        """All records of a tenant, primary first, then creation order."""

    @abstractmethod
    async def list_all(self) -> list[DomainRecord]:
        """All records in creation order."""

    @abstractmethod
    async def update(self, domain_id: str, **changes: Any) -> DomainRecord | None:
        """Apply field changes to one record atomically.

        Returns:
            The updated record, or None if it does not exist.
        """

    @abstractmethod
    async def set_primary(self, tenant_id: str, domain_id: str) -> bool:
        """Make ``domain_id`` the tenant's only primary domain.

        Returns:
            False if the record does not exist or belongs to another tenant.
        """

    @abstractmethod
    async def delete(self, domain_id: str) -> bool:
        """Delete a record. Returns False if not found."""

    async def close(self) -> None:
        """Release backend resources."""


class JSONDomainStore(DomainStore):
    """JSON file-based storage for domain records.

    Safe for concurrent coroutines via an asyncio lock, and for several
    processes sharing one file via an exclusive ``flock`` on a sibling
    ``.lock`` file held around every read-modify-write. The cache is dropped
    whenever the file on disk no longer matches the one it was read from.

    Compound operations are applied to a copy of the in-memory map and
    persisted with a single write, which only replaces the cache once the
    write succeeded.
    """

    def __init__(self, storage_path: str | Path = "domains.json") -> None:
        """Initialize domain store.

        Args:
            storage_path: Path to the JSON storage file.
        """
        self.storage_path = Path(storage_path)
        self.lock_path = self.storage_path.with_suffix(self.storage_path.suffix + ".lock")
        self._lock = asyncio.Lock()
        self._cache: dict[str, DomainRecord] | None = None
        self._signature: tuple[int, int, int] | None = None

    def _file_signature(self) -> tuple[int, int, int] | None:
        try:
            st = self.storage_path.stat()
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _acquire_file_lock(self) -> TextIO:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_path, "a")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        except OSError:
            handle.close()
            raise
        return handle

    @staticmethod
    def _release_file_lock(handle: TextIO) -> None:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

    @asynccontextmanager
    async def _write_lock(self) -> AsyncIterator[None]:
        """Hold the in-process and inter-process locks for a mutation."""
        async with self._lock:
            handle = await asyncio.to_thread(self._acquire_file_lock)
            try:
                yield
            finally:
                self._release_file_lock(handle)

    async def _load(self) -> dict[str, DomainRecord]:
        """Load records from the storage file, reusing the cache while it is current."""
        signature = await asyncio.to_thread(self._file_signature)
        if self._cache is not None and signature == self._signature:
            return self._cache

        if signature is None:
            self._cache = {}
            self._signature = None
            return self._cache

        content = await asyncio.to_thread(self.storage_path.read_text, encoding="utf-8")
        data = json.loads(content) if content.strip() else {}
        self._cache = {
            domain_id: DomainRecord.from_dict(record)
            for domain_id, record in data.get("domains", {}).items()
        }
        self._signature = signature
        return self._cache

    async def _save(self, domains: dict[str, DomainRecord]) -> None:
        """Write records to a temporary file and move it into place."""
        data = {"domains": {domain_id: rec.to_dict() for domain_id, rec in domains.items()}}
        content = json.dumps(data, indent=2)
        tmp_path = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")

        def _write() -> None:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(content, encoding="utf-8")
            tmp_path.replace(self.storage_path)

        await asyncio.to_thread(_write)
        self._cache = domains
        self._signature = await asyncio.to_thread(self._file_signature)

    @staticmethod
    def _copy(domains: dict[str, DomainRecord]) -> dict[str, DomainRecord]:
        return {domain_id: replace(rec) for domain_id, rec in domains.items()}

    async def create(self, record: DomainRecord) -> DomainRecord:
        async with self._write_lock():
            domains = await self._load()
            if any(rec.hostname == record.hostname for rec in domains.values()):
                raise DuplicateHostnameError(record.hostname)

            staged = self._copy(domains)
            if record.is_primary:
                for rec in staged.values():
                    if rec.tenant_id == record.tenant_id:
                        rec.is_primary = False
            staged[record.id] = replace(record)
            await self._save(staged)
            return replace(record)

    async def get(self, domain_id: str) -> DomainRecord | None:
        async with self._lock:
            domains = await self._load()
            record = domains.get(domain_id)
            return replace(record) if record else None

    async def get_by_hostname(self, hostname: str) -> DomainRecord | None:
        async with self._lock:
            domains = await self._load()
            for record in domains.values():
                if record.hostname == hostname:
                    return replace(record)
            return None

    async def list_by_tenant(self, tenant_id: str) -> list[DomainRecord]:
        async with self._lock:
            domains = await self._load()
            records = [replace(rec) for rec in domains.values() if rec.tenant_id == tenant_id]
        primaries = sum(1 for rec in records if rec.is_primary)
        if primaries > 1:
            raise InvariantViolationError(f"Tenant {tenant_id} has {primaries} primary domains")
        return sort_for_listing(records)

    async def list_all(self) -> list[DomainRecord]:
        async with self._lock:
            domains = await self._load()
            return sorted((replace(rec) for rec in domains.values()), key=lambda r: r.created_at)

    async def update(self, domain_id: str, **changes: Any) -> DomainRecord | None:
        _check_changes(changes)
        async with self._write_lock():
            domains = await self._load()
            if domain_id not in domains:
                return None
            staged = self._copy(domains)
            updated = replace(staged[domain_id], **changes)
            staged[domain_id] = updated
            await self._save(staged)
            return replace(updated)

    async def set_primary(self, tenant_id: str, domain_id: str) -> bool:
        async with self._write_lock():
            domains = await self._load()
            target = domains.get(domain_id)
            if target is None or target.tenant_id != tenant_id:
                return False
            staged = self._copy(domains)
            for rec in staged.values():
                if rec.tenant_id == tenant_id:
                    rec.is_primary = rec.id == domain_id
            await self._save(staged)
            return True

    async def delete(self, domain_id: str) -> bool:
        async with self._write_lock():
            domains = await self._load()
            if domain_id not in domains:
                return False
            staged = self._copy(domains)
            del staged[domain_id]
            await self._save(staged)
            return True

    def invalidate_cache(self) -> None:
        """Invalidate the in-memory cache.

        Forces the next read to go back to disk even if the file looks
        unchanged.
        """
        self._cache = None
        self._signature = None


_SCHEMA = """
CREATE TABLE IF NOT EXISTS domains (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    hostname TEXT NOT NULL UNIQUE,
    is_primary INTEGER NOT NULL DEFAULT 0,
    verify_token TEXT NOT NULL,
    verified INTEGER NOT NULL DEFAULT 0,
    verified_at TEXT,
    ssl_status TEXT NOT NULL DEFAULT 'PENDING',
    ssl_expires_at TEXT,
    certificate_path TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_domains_tenant ON domains(tenant_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_domains_one_primary
    ON domains(tenant_id) WHERE is_primary = 1;
"""

_COLUMNS = (
    "id",
    "tenant_id",
    "hostname",
    "is_primary",
    "verify_token",
    "verified",
    "verified_at",
    "ssl_status",
    "ssl_expires_at",
    "certificate_path",
    "created_at",
)


def _to_row(record: DomainRecord) -> tuple[Any, ...]:
    data = record.to_dict()
    data["is_primary"] = int(record.is_primary)
    data["verified"] = int(record.verified)
    return tuple(data[col] for col in _COLUMNS)


def _from_row(row: sqlite3.Row) -> DomainRecord:
    return DomainRecord.from_dict(dict(row))


def _to_column(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, SslStatus):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


class SQLiteDomainStore(DomainStore):
    """SQLite storage backend.

    Hostname uniqueness and the one-primary-per-tenant rule are enforced by the
    schema (a UNIQUE column and a partial unique index), so a defect in the
    application layer cannot persist a violation.
    """

    def __init__(self, db_path: str | Path = "domains.db") -> None:
        """Initialize SQLite storage.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._thread_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.executescript(_SCHEMA)
            self._conn = conn
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements in one transaction with automatic commit/rollback."""
        with self._thread_lock:
            conn = self._get_connection()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise

    async def _run(self, fn: Any, *args: Any) -> Any:
        return await asyncio.to_thread(fn, *args)

    def _create(self, record: DomainRecord) -> DomainRecord:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        try:
            with self._transaction() as conn:
                if record.is_primary:
                    conn.execute(
                        "UPDATE domains SET is_primary = 0 WHERE tenant_id = ? AND is_primary = 1",
                        (record.tenant_id,),
                    )
                conn.execute(
                    f"INSERT INTO domains ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                    _to_row(record),
                )
        except sqlite3.IntegrityError as e:
            if "hostname" in str(e):
                raise DuplicateHostnameError(record.hostname) from e
            raise
        return replace(record)

    def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> DomainRecord | None:
        with self._thread_lock:
            row = self._get_connection().execute(sql, params).fetchone()
        return _from_row(row) if row else None

    def _fetch_all(self, sql: str, params: tuple[Any, ...]) -> list[DomainRecord]:
        with self._thread_lock:
            rows = self._get_connection().execute(sql, params).fetchall()
        return [_from_row(row) for row in rows]

    def _update(self, domain_id: str, changes: dict[str, Any]) -> DomainRecord | None:
        with self._transaction() as conn:
            if changes:
                assignments = ", ".join(f"{name} = ?" for name in changes)
                values = tuple(_to_column(value) for value in changes.values())
                cur = conn.execute(
                    f"UPDATE domains SET {assignments} WHERE id = ?", (*values, domain_id)
                )
                if cur.rowcount == 0:
                    return None
            row = conn.execute("SELECT * FROM domains WHERE id = ?", (domain_id,)).fetchone()
        return _from_row(row) if row else None

    def _set_primary(self, tenant_id: str, domain_id: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id FROM domains WHERE id = ? AND tenant_id = ?", (domain_id, tenant_id)
            ).fetchone()
            if row is None:
                return False
            conn.execute(
                "UPDATE domains SET is_primary = 0 WHERE tenant_id = ? AND is_primary = 1",
                (tenant_id,),
            )
            conn.execute("UPDATE domains SET is_primary = 1 WHERE id = ?", (domain_id,))
        return True

    def _delete(self, domain_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM domains WHERE id = ?", (domain_id,))
        return cur.rowcount > 0

    async def create(self, record: DomainRecord) -> DomainRecord:
        return await self._run(self._create, record)

    async def get(self, domain_id: str) -> DomainRecord | None:
        return await self._run(self._fetch_one, "SELECT * FROM domains WHERE id = ?", (domain_id,))

    async def get_by_hostname(self, hostname: str) -> DomainRecord | None:
        return await self._run(
            self._fetch_one, "SELECT * FROM domains WHERE hostname = ?", (hostname,)
        )

    async def list_by_tenant(self, tenant_id: str) -> list[DomainRecord]:
        return await self._run(
            self._fetch_all,
            "SELECT * FROM domains WHERE tenant_id = ? ORDER BY is_primary DESC, created_at ASC",
            (tenant_id,),
        )

    async def list_all(self) -> list[DomainRecord]:
        return await self._run(self._fetch_all, "SELECT * FROM domains ORDER BY created_at ASC", ())

    async def update(self, domain_id: str, **changes: Any) -> DomainRecord | None:
        _check_changes(changes)
        return await self._run(self._update, domain_id, changes)

    async def set_primary(self, tenant_id: str, domain_id: str) -> bool:
        return await self._run(self._set_primary, tenant_id, domain_id)

    async def delete(self, domain_id: str) -> bool:
        return await self._run(self._delete, domain_id)

    async def close(self) -> None:
        with self._thread_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def open_store(config: DomainsConfig) -> DomainStore:
    """Build the store selected by ``config.storage_backend``."""
    if config.storage_backend == "sqlite":
        logger.debug("Opening SQLite domain store", path=config.storage_path)
        return SQLiteDomainStore(config.storage_path)
    logger.debug("Opening JSON domain store", path=config.storage_path)
    return JSONDomainStore(config.storage_path)
