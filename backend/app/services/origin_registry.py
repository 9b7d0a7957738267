"""Origin registry - the durable CORS allow-list.

The registry keeps an in-memory snapshot for per-request lookups and a
store for durability. Every mutation is written to the store first and only
committed to memory after the write succeeded, so a failed or timed-out
write never leaves memory ahead of storage. The snapshot is replaced
wholesale (copy-on-write), so readers never take a lock.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.allowed_origin import AllowedOrigin
from app.services.origin_url import InvalidOriginURLError, canonicalize_origin

logger = logging.getLogger(__name__)


class OriginEnvironment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class RegistryError(Exception):
    """Base origin registry error."""


class OriginNotFoundError(RegistryError):
    """No origin with the given id."""


class DuplicateOriginError(RegistryError):
    """An origin with the same URL is already registered."""


class RegistryPersistenceError(RegistryError):
    """The store rejected or timed out a write; memory was left unchanged."""


@dataclass(frozen=True)
class OriginEntry:
    """Snapshot of one allow-list entry."""

    id: str
    url: str
    environment: OriginEnvironment
    description: str
    added_by: str
    added_at: datetime
    last_used_at: datetime | None = None
    usage_count: int = 0
    is_active: bool = True
    tags: tuple[str, ...] = field(default_factory=tuple)


class OriginStore(Protocol):
    """Durable storage for allow-list entries."""

    async def load_all(self) -> list[OriginEntry]: ...

    async def insert(self, entry: OriginEntry) -> None: ...

    async def update(self, entry: OriginEntry) -> None: ...

    async def delete(self, origin_id: str) -> bool: ...

    async def record_usage(self, origin_id: str, used_at: datetime) -> None: ...


def _validate(url: str, environment: OriginEnvironment) -> str:
    canonical = canonicalize_origin(url)
    if environment is OriginEnvironment.PROD and not canonical.startswith("https://"):
        raise InvalidOriginURLError(f"Production origins must use https: {url!r}")
    return canonical


def _utcnow() -> datetime:
    return datetime.now(UTC)


class OriginRegistry:
    """In-memory allow-list backed by an OriginStore."""

    def __init__(
        self,
        store: OriginStore,
        io_timeout: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._io_timeout = io_timeout
        self._clock = clock
        self._entries: dict[str, OriginEntry] = {}
        self._write_lock = asyncio.Lock()
        self._usage_in_flight: set[str] = set()
        # Set when a write failed; memory may no longer match storage
        self.stale = False

    async def _persist(self, action: str, write: Callable[[], Awaitable[Any]]) -> Any:
        try:
            result = await asyncio.wait_for(write(), timeout=self._io_timeout)
        except TimeoutError as e:
            self.stale = True
            logger.error(f"Origin registry {action} timed out after {self._io_timeout}s")
            raise RegistryPersistenceError(f"Timed out persisting origin {action}") from e
        except Exception as e:
            self.stale = True
            logger.error(f"Origin registry {action} failed: {e}")
            raise RegistryPersistenceError(f"Failed to persist origin {action}") from e
        return result

    async def load(self) -> None:
        """Load entries from the store; a missing or corrupt store starts empty."""
        try:
            entries = await asyncio.wait_for(self._store.load_all(), timeout=self._io_timeout)
        except Exception as e:
            logger.warning(f"Could not load allowed origins, starting with an empty list: {e}")
            entries = []
        self._entries = {entry.id: entry for entry in entries}
        self.stale = False
        logger.info(f"Loaded {len(self._entries)} allowed origins")

    async def seed(self, seeds: dict[str, list[str]]) -> int:
        """Add configured seed origins that are not registered yet.

        If storage is unavailable the seed is still served from memory (and
        the registry flagged stale) so a database outage at boot does not
        lock out the configured frontends.
        """
        added = 0
        for env_name, urls in seeds.items():
            environment = OriginEnvironment(env_name)
            for url in urls:
                try:
                    canonical = _validate(url, environment)
                except InvalidOriginURLError as e:
                    logger.warning(f"Skipping invalid seed origin: {e}")
                    continue
                if self.get_by_url(canonical) is not None:
                    continue
                try:
                    await self.add(
                        canonical,
                        environment,
                        description=f"Seeded {environment.value} origin",
                        added_by="system",
                    )
                except RegistryPersistenceError:
                    entry = self._new_entry(
                        canonical, environment, f"Seeded {environment.value} origin", "system"
                    )
                    self._entries = {**self._entries, entry.id: entry}
                added += 1
        return added

    def _new_entry(
        self,
        url: str,
        environment: OriginEnvironment,
        description: str,
        added_by: str,
        tags: Iterable[str] = (),
        is_active: bool = True,
    ) -> OriginEntry:
        return OriginEntry(
            id=str(uuid.uuid4()),
            url=url,
            environment=environment,
            description=description,
            added_by=added_by,
            added_at=self._clock(),
            is_active=is_active,
            tags=tuple(tags),
        )

    async def add(
        self,
        url: str,
        environment: OriginEnvironment,
        description: str,
        added_by: str = "system",
        tags: Iterable[str] = (),
        is_active: bool = True,
    ) -> OriginEntry:
        """Register a new origin.

        Raises:
            InvalidOriginURLError: Malformed URL, or prod origin without https
            DuplicateOriginError: URL already registered
            RegistryPersistenceError: Store write failed
        """
        canonical = _validate(url, environment)
        async with self._write_lock:
            if self.get_by_url(canonical) is not None:
                raise DuplicateOriginError(f"Origin already registered: {canonical}")
            entry = self._new_entry(canonical, environment, description, added_by, tags, is_active)
            await self._persist("add", lambda: self._store.insert(entry))
            self._entries = {**self._entries, entry.id: entry}

        logger.info(f"Added allowed origin: {entry.url} ({entry.environment.value})")
        return entry

    async def update(self, origin_id: str, changes: dict[str, Any]) -> OriginEntry:
        """Apply a partial update (url, environment, description, is_active, tags).

        Raises:
            OriginNotFoundError: Unknown id
            InvalidOriginURLError: Resulting URL/environment pair is invalid
            DuplicateOriginError: New URL collides with another entry
            RegistryPersistenceError: Store write failed
        """
        async with self._write_lock:
            current = self._entries.get(origin_id)
            if current is None:
                raise OriginNotFoundError(f"Origin not found: {origin_id}")

            fields: dict[str, Any] = {}
            for name in ("description", "is_active"):
                if changes.get(name) is not None:
                    fields[name] = changes[name]
            if changes.get("tags") is not None:
                fields["tags"] = tuple(changes["tags"])
            environment = OriginEnvironment(changes.get("environment") or current.environment)
            url = _validate(changes.get("url") or current.url, environment)
            other = self.get_by_url(url)
            if other is not None and other.id != origin_id:
                raise DuplicateOriginError(f"Origin already registered: {url}")

            updated = replace(current, url=url, environment=environment, **fields)
            await self._persist("update", lambda: self._store.update(updated))
            # Usage may have moved while the write was in flight
            latest = self._entries.get(origin_id, current)
            updated = replace(
                updated, usage_count=latest.usage_count, last_used_at=latest.last_used_at
            )
            self._entries = {**self._entries, origin_id: updated}

        logger.info(f"Updated allowed origin: {updated.url}")
        return updated

    async def remove(self, origin_id: str) -> bool:
        """Delete an origin. Returns False if the id is unknown."""
        async with self._write_lock:
            current = self._entries.get(origin_id)
            if current is None:
                return False
            await self._persist("remove", lambda: self._store.delete(origin_id))
            self._entries = {k: v for k, v in self._entries.items() if k != origin_id}

        logger.info(f"Removed allowed origin: {current.url}")
        return True

    async def record_usage(self, url: str) -> None:
        """Bump usage stats for an admitted origin; failures are only logged.

        Runs outside the write lock so admin mutations never queue behind
        usage traffic. While a usage write for an origin is in flight,
        further hits for that origin are dropped.
        """
        current = self.get_by_url(url)
        if current is None or current.id in self._usage_in_flight:
            return
        self._usage_in_flight.add(current.id)
        now = self._clock()
        try:
            await self._persist("usage", lambda: self._store.record_usage(current.id, now))
        except RegistryPersistenceError:
            return
        finally:
            self._usage_in_flight.discard(current.id)
        latest = self._entries.get(current.id)
        if latest is not None:
            bumped = replace(latest, usage_count=latest.usage_count + 1, last_used_at=now)
            self._entries = {**self._entries, current.id: bumped}

    def get(self, origin_id: str) -> OriginEntry | None:
        return self._entries.get(origin_id)

    def get_by_url(self, url: str) -> OriginEntry | None:
        for entry in self._entries.values():
            if entry.url == url:
                return entry
        return None

    def list_all(self) -> list[OriginEntry]:
        return sorted(self._entries.values(), key=lambda e: e.added_at)

    def active_origins(self, environment: OriginEnvironment | str | None = None) -> list[str]:
        """URLs of active entries, optionally filtered by environment."""
        env = OriginEnvironment(environment) if environment else None
        return [
            entry.url
            for entry in self._entries.values()
            if entry.is_active and (env is None or entry.environment is env)
        ]

    def is_allowed(self, origin: str) -> bool:
        entry = self.get_by_url(origin)
        return entry is not None and entry.is_active

    def stats(self) -> dict[str, Any]:
        entries = list(self._entries.values())
        active = sum(1 for e in entries if e.is_active)
        most_used = sorted(entries, key=lambda e: e.usage_count, reverse=True)[:5]
        return {
            "total": len(entries),
            "active": active,
            "inactive": len(entries) - active,
            "by_environment": {
                env.value: sum(1 for e in entries if e.environment is env)
                for env in OriginEnvironment
            },
            "most_used": [{"url": e.url, "usage_count": e.usage_count} for e in most_used],
            "stale": self.stale,
        }


def _to_entry(row: AllowedOrigin) -> OriginEntry:
    return OriginEntry(
        id=str(row.id),
        url=row.url,
        environment=OriginEnvironment(row.environment),
        description=row.description,
        added_by=row.added_by,
        added_at=row.added_at,
        last_used_at=row.last_used_at,
        usage_count=row.usage_count,
        is_active=row.is_active,
        tags=tuple(row.tags or ()),
    )


class SqlOriginStore:
    """OriginStore over the ``allowed_origins`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load_all(self) -> list[OriginEntry]:
        async with self._session_factory() as session:
            result = await session.execute(select(AllowedOrigin).order_by(AllowedOrigin.added_at))
            return [_to_entry(row) for row in result.scalars().all()]

    async def insert(self, entry: OriginEntry) -> None:
        async with self._session_factory() as session:
            session.add(
                AllowedOrigin(
                    id=uuid.UUID(entry.id),
                    url=entry.url,
                    environment=entry.environment.value,
                    description=entry.description,
                    added_by=entry.added_by,
                    added_at=entry.added_at,
                    usage_count=entry.usage_count,
                    is_active=entry.is_active,
                    tags=list(entry.tags),
                )
            )
            await session.commit()

    async def update(self, entry: OriginEntry) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(AllowedOrigin)
                .where(AllowedOrigin.id == uuid.UUID(entry.id))
                .values(
                    url=entry.url,
                    environment=entry.environment.value,
                    description=entry.description,
                    is_active=entry.is_active,
                    tags=list(entry.tags),
                )
            )
            await session.commit()

    async def delete(self, origin_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(AllowedOrigin).where(AllowedOrigin.id == uuid.UUID(origin_id))
            )
            await session.commit()
            return bool(result.rowcount)

    async def record_usage(self, origin_id: str, used_at: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(AllowedOrigin)
                .where(AllowedOrigin.id == uuid.UUID(origin_id))
                .values(usage_count=AllowedOrigin.usage_count + 1, last_used_at=used_at)
            )
            await session.commit()
