"""Cached identity provider sessions.

One row per audience and identity. Rows are only ever upserted; expiry is
judged when a row is read, so nothing deletes them.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import BigInteger, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import insert

from social.graze.authgate.model.base import Base, str32, str512, token


class AuthSession(Base):
    """Provider tokens cached for an identity within an audience.

    The access token is served from the cache until ``expires_at`` (epoch
    seconds) minus the configured grace period. The refresh token may be
    missing, in which case the session can only be replaced by a full
    authentication.
    """
    __tablename__ = "auth_sessions"

    audience: Mapped[str32] = mapped_column(primary_key=True)
    identity: Mapped[str512] = mapped_column(primary_key=True)
    access_token: Mapped[token]
    id_token: Mapped[token]
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    secondary_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


def upsert_auth_session_stmt(
    audience: str,
    identity: str,
    access_token: str,
    id_token: str,
    refresh_token: Optional[str],
    expires_at: int,
    secondary_token: Optional[str],
    updated_at: datetime,
):
    """Create PostgreSQL upsert statement for cached sessions.

    Overwrites every token column of an existing audience/identity row, or
    inserts a new one.
    """
    values = {
        "access_token": access_token,
        "id_token": id_token,
        "refresh_token": refresh_token,
        "expires_at": expires_at,
        "secondary_token": secondary_token,
        "updated_at": updated_at,
    }
    return (
        insert(AuthSession)
        .values([{"audience": audience, "identity": identity, **values}])
        .on_conflict_do_update(
            index_elements=["audience", "identity"],
            set_=values,
        )
    )
