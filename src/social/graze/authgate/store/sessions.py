from abc import ABC, abstractmethod
import dataclasses
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from typing import Dict, Optional, Tuple

import redis.asyncio as redis
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    async_sessionmaker,
    AsyncSession,
)

from social.graze.authgate.model.session import AuthSession, upsert_auth_session_stmt
from social.graze.authgate.store.errors import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionRecord:
    """
    Provider tokens cached for one identity.

    Records are values: the orchestrator builds a new record and writes it back
    instead of changing one in place.

    Attributes:
        identity: Normalized identity (lower-cased email)
        access_token: Opaque bearer token
        id_token: Opaque identity token
        refresh_token: Opaque refresh token, or None when the provider gave none
        expires_at: Epoch seconds after which access_token is invalid
        secondary_token: Best-effort secondary credential, if one was obtained
    """

    identity: str
    access_token: str
    id_token: str
    refresh_token: Optional[str]
    expires_at: int
    secondary_token: Optional[str] = None

    def is_fresh(self, now: float, grace_period: float) -> bool:
        return self.expires_at > now + grace_period

    def to_json(self) -> str:
        return json.dumps(dataclasses.asdict(self))

    @staticmethod
    def from_json(data: str | bytes) -> "SessionRecord":
        return SessionRecord(**json.loads(data))


class SessionStore(ABC):
    """Upsert-only mapping from (audience, identity) to `SessionRecord`."""

    @abstractmethod
    async def get(self, audience: str, identity: str) -> Optional[SessionRecord]:
        pass

    @abstractmethod
    async def put(self, audience: str, record: SessionRecord) -> None:
        pass


class MemorySessionStore(SessionStore):
    """Process-local session store. State lives and dies with the instance."""

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], SessionRecord] = {}

    async def get(self, audience: str, identity: str) -> Optional[SessionRecord]:
        return self._records.get((audience, identity))

    async def put(self, audience: str, record: SessionRecord) -> None:
        self._records[(audience, record.identity)] = record

    def __len__(self) -> int:
        return len(self._records)


class RedisSessionStore(SessionStore):
    """Stores each record as JSON under `{prefix}:{audience}:{identity}`."""

    def __init__(self, redis_client: redis.Redis, prefix: str = "auth_session") -> None:
        self.redis_client = redis_client
        self.prefix = prefix

    def key(self, audience: str, identity: str) -> str:
        return f"{self.prefix}:{audience}:{identity}"

    async def get(self, audience: str, identity: str) -> Optional[SessionRecord]:
        try:
            data = await self.redis_client.get(self.key(audience, identity))
        except (redis.RedisError, OSError) as e:
            raise StoreError(f"redis get failed: {e}") from e

        if data is None:
            return None

        try:
            return SessionRecord.from_json(data)
        except (ValueError, TypeError):
            # Unreadable entries are treated as a cache miss; the next put replaces them.
            logger.warning("Discarding unreadable session entry %s", audience)
            return None

    async def put(self, audience: str, record: SessionRecord) -> None:
        try:
            await self.redis_client.set(
                self.key(audience, record.identity), record.to_json()
            )
        except (redis.RedisError, OSError) as e:
            raise StoreError(f"redis set failed: {e}") from e


class DatabaseSessionStore(SessionStore):
    """PostgreSQL session store backed by the `auth_sessions` table."""

    def __init__(self, database_session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.database_session_maker = database_session_maker

    async def get(self, audience: str, identity: str) -> Optional[SessionRecord]:
        try:
            async with self.database_session_maker() as database_session:
                stmt = select(AuthSession).where(
                    AuthSession.audience == audience,
                    AuthSession.identity == identity,
                )
                auth_session: Optional[AuthSession] = (
                    await database_session.scalars(stmt)
                ).first()
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"session lookup failed: {e}") from e

        if auth_session is None:
            return None

        return SessionRecord(
            identity=auth_session.identity,
            access_token=auth_session.access_token,
            id_token=auth_session.id_token,
            refresh_token=auth_session.refresh_token,
            expires_at=auth_session.expires_at,
            secondary_token=auth_session.secondary_token,
        )

    async def put(self, audience: str, record: SessionRecord) -> None:
        stmt = upsert_auth_session_stmt(
            audience=audience,
            identity=record.identity,
            access_token=record.access_token,
            id_token=record.id_token,
            refresh_token=record.refresh_token,
            expires_at=record.expires_at,
            secondary_token=record.secondary_token,
            updated_at=datetime.now(timezone.utc),
        )
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    await database_session.execute(stmt)
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"session upsert failed: {e}") from e
