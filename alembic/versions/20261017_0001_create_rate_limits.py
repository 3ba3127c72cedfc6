"""create rate_limits

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261017_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "rate_limits",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=False),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("request_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "last_updated",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("ip_address", "endpoint", name="uq_rate_limits_ip_endpoint"),
    )
    op.create_index(
        "idx_rate_limits_ip_endpoint",
        "rate_limits",
        ["ip_address", "endpoint"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_rate_limits_ip_endpoint", table_name="rate_limits")
    op.drop_table("rate_limits")
