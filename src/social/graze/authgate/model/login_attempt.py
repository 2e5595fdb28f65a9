"""Login attempt audit trail.

Rows are inserted once per full authentication attempt and never updated.
"""
from datetime import datetime
from sqlalchemy import BigInteger, Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from social.graze.authgate.model.base import Base, str32, str512


class LoginLog(Base):
    """A single authentication attempt against the identity provider.

    Cache hits and refreshes are not recorded; only full authentications
    (including those that follow a failed refresh) and their failures are.
    The second-factor code itself is never stored, only whether one was
    supplied.
    """
    __tablename__ = "login_attempts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    audience: Mapped[str32]
    identity: Mapped[str512]
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    client_address: Mapped[str] = mapped_column(String(64), nullable=False)
    second_factor_provided: Mapped[bool] = mapped_column(Boolean, nullable=False)

    __table_args__ = (
        Index("idx_login_attempts_identity", "identity"),
        Index("idx_login_attempts_attempted_at", "attempted_at"),
    )
