from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    async_sessionmaker,
    AsyncSession,
)

from social.graze.authgate.auth.identities import mask_identity
from social.graze.authgate.model.login_attempt import LoginLog
from social.graze.authgate.store.errors import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginAttempt:
    identity: str
    timestamp: datetime
    success: bool
    client_address: str
    second_factor_provided: bool
    audience: str = "standard"

    def __str__(self) -> str:
        outcome = "success" if self.success else "failure"
        return (
            f"login {outcome} for {mask_identity(self.identity)} "
            f"from {self.client_address} ({self.audience})"
        )


class AuditLog(ABC):
    """Append-only record of login attempts."""

    @abstractmethod
    async def append(self, attempt: LoginAttempt) -> None:
        pass


class MemoryAuditLog(AuditLog):
    def __init__(self) -> None:
        self._attempts: List[LoginAttempt] = []
        self._lock = asyncio.Lock()

    async def append(self, attempt: LoginAttempt) -> None:
        async with self._lock:
            self._attempts.append(attempt)

    @property
    def attempts(self) -> Tuple[LoginAttempt, ...]:
        return tuple(self._attempts)


class DatabaseAuditLog(AuditLog):
    """Inserts one `login_attempts` row per attempt, each in its own transaction."""

    def __init__(self, database_session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.database_session_maker = database_session_maker

    async def append(self, attempt: LoginAttempt) -> None:
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    database_session.add(
                        LoginLog(
                            audience=attempt.audience,
                            identity=attempt.identity,
                            attempted_at=attempt.timestamp,
                            success=attempt.success,
                            client_address=attempt.client_address[:64],
                            second_factor_provided=attempt.second_factor_provided,
                        )
                    )
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"login attempt insert failed: {e}") from e

        logger.debug("Recorded %s", attempt)
