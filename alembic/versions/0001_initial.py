"""failed request audit trail."""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "failed_requests",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ip_address", sa.String(length=128), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("failure_reason", sa.String(length=32), nullable=False),
        sa.CheckConstraint(
            "failure_reason IN ('Missing token', 'Invalid token')",
            name="ck_failed_requests_reason",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_failed_requests_ip_timestamp",
        "failed_requests",
        ["ip_address", "timestamp"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_failed_requests_ip_timestamp", table_name="failed_requests")
    op.drop_table("failed_requests")
