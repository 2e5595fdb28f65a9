"""init

Revision ID: 5c1f0a2d9e47
Revises:
Create Date: 2026-10-19 10:02:14.518203

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5c1f0a2d9e47"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "auth_sessions",
        sa.Column("audience", sa.String(32), primary_key=True),
        sa.Column("identity", sa.String(512), primary_key=True),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("id_token", sa.Text, nullable=False),
        sa.Column("refresh_token", sa.Text, nullable=True),
        sa.Column("expires_at", sa.BigInteger, nullable=False),
        sa.Column("secondary_token", sa.Text, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "login_attempts",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("audience", sa.String(32), nullable=False),
        sa.Column("identity", sa.String(512), nullable=False),
        sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("success", sa.Boolean, nullable=False),
        sa.Column("client_address", sa.String(64), nullable=False),
        sa.Column("second_factor_provided", sa.Boolean, nullable=False),
    )
    op.create_index("idx_login_attempts_identity", "login_attempts", ["identity"])
    op.create_index(
        "idx_login_attempts_attempted_at", "login_attempts", ["attempted_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_login_attempts_attempted_at", "login_attempts")
    op.drop_index("idx_login_attempts_identity", "login_attempts")
    op.drop_table("login_attempts")
    op.drop_table("auth_sessions")
