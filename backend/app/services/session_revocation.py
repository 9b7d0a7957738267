"""Session revocation - a denylist of logged-out tokens.

Revoked tokens are stored by SHA-256 hash with the token's own expiry, so
entries are worthless once they pass and can be purged at any time.

Failure policy:

- ``revoke`` is best-effort. Errors are logged and swallowed so logout
  always succeeds for the user. The write is shielded from caller
  cancellation and is idempotent, so a retry is always safe.
- ``is_revoked`` fails open. If the backend errors or times out the token
  is treated as not revoked rather than locking every user out. This trades
  strict session termination for availability; revocations recorded by
  this process are still enforced from the local cache.
"""

import asyncio
import hashlib
import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.token_blacklist import RevokedToken

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    """Hash a raw token for storage; raw tokens are never persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RevocationBackend(Protocol):
    """Persisted key-value store with expiry for revoked token hashes."""

    async def put(self, token_hash: str, user_id: str, expires_at: datetime) -> None: ...

    async def exists(self, token_hash: str, now: datetime) -> bool: ...

    async def delete_expired(self, now: datetime) -> int: ...


class SqlRevocationBackend:
    """RevocationBackend over the ``revoked_tokens`` table.

    PostgreSQL has no row TTL, so expired rows are removed by
    ``delete_expired`` from the maintenance loop; lookups ignore them.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def put(self, token_hash: str, user_id: str, expires_at: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(
                insert(RevokedToken)
                .values(token_hash=token_hash, user_id=user_id, expires_at=expires_at)
                .on_conflict_do_nothing(index_elements=[RevokedToken.token_hash])
            )
            await session.commit()

    async def exists(self, token_hash: str, now: datetime) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(RevokedToken.token_hash).where(
                    RevokedToken.token_hash == token_hash,
                    RevokedToken.expires_at > now,
                )
            )
            return result.scalar_one_or_none() is not None

    async def delete_expired(self, now: datetime) -> int:
        async with self._session_factory() as session:
            result: Any = await session.execute(
                delete(RevokedToken).where(RevokedToken.expires_at <= now)
            )
            await session.commit()
            return result.rowcount or 0


class SessionRevocationStore:
    """Denylist in front of stateless token verification."""

    def __init__(
        self,
        backend: RevocationBackend,
        io_timeout: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._backend = backend
        self._io_timeout = io_timeout
        self._clock = clock
        # token_hash -> expires_at for revocations made by this process
        self._local: dict[str, datetime] = {}
        self._local_lock = threading.Lock()

    async def revoke(self, token_hash: str, user_id: str, expires_at: datetime) -> None:
        """Record a revocation. Never raises on storage failure."""
        with self._local_lock:
            self._local[token_hash] = expires_at

        write = asyncio.ensure_future(
            asyncio.wait_for(
                self._backend.put(token_hash, user_id, expires_at),
                timeout=self._io_timeout,
            )
        )
        try:
            await asyncio.shield(write)
        except TimeoutError:
            logger.error(f"Timed out persisting revocation for user {user_id}")
        except Exception as e:
            logger.error(f"Failed to persist revocation for user {user_id}: {e}")

    def _locally_revoked(self, token_hash: str, now: datetime) -> bool:
        with self._local_lock:
            expires_at = self._local.get(token_hash)
            if expires_at is None:
                return False
            if expires_at <= now:
                del self._local[token_hash]
                return False
            return True

    async def is_revoked(self, token_hash: str) -> bool:
        """Check the denylist; storage errors are treated as not revoked."""
        now = self._clock()
        if self._locally_revoked(token_hash, now):
            return True
        try:
            return await asyncio.wait_for(
                self._backend.exists(token_hash, now), timeout=self._io_timeout
            )
        except TimeoutError:
            logger.warning(
                "Revocation store timed out; treating token as not revoked",
                extra={"reason_code": "REVOCATION_STORE_UNAVAILABLE"},
            )
        except Exception as e:
            logger.warning(
                f"Revocation store unavailable; treating token as not revoked: {e}",
                extra={"reason_code": "REVOCATION_STORE_UNAVAILABLE"},
            )
        return False

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Remove entries whose token has expired. Returns rows removed from storage."""
        now = now or self._clock()
        with self._local_lock:
            for token_hash in [h for h, exp in self._local.items() if exp <= now]:
                del self._local[token_hash]
        try:
            return await asyncio.wait_for(
                self._backend.delete_expired(now), timeout=self._io_timeout
            )
        except Exception as e:
            logger.warning(f"Failed to purge expired revocations: {e}")
            return 0

    async def revoke_token(self, token: str, claims: dict[str, Any]) -> None:
        """Revoke a raw token using its ``sub`` and ``exp`` claims."""
        expires_at = datetime.fromtimestamp(claims["exp"], tz=UTC)
        await self.revoke(hash_token(token), str(claims.get("sub", "")), expires_at)


async def revocation_purge_loop(store: SessionRevocationStore, interval: int = 300) -> None:
    """Periodically remove expired entries from the revocation store."""
    while True:
        try:
            await asyncio.sleep(interval)
            removed = await store.purge_expired()
            if removed > 0:
                logger.info(f"Cleaned up {removed} expired revoked tokens")
        except asyncio.CancelledError:
            break
