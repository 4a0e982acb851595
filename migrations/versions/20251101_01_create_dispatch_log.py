"""create dispatch_log reservation table

Revision ID: 20251101_01
Revises: None
Create Date: 2025-11-01
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20251101_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "dispatch_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("occurrence_key", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("source_id", sa.String(), nullable=False),
        sa.Column("recipient_id", sa.String(), nullable=False),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="reserved"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_message_id", sa.String(), nullable=True),
        sa.Column("last_error", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        # The reservation arbiter: one row per logical occurrence, ever.
        sa.UniqueConstraint("occurrence_key", name="uq_dispatch_log_occurrence_key"),
    )
    op.create_index("ix_dispatch_log_kind", "dispatch_log", ["kind"])
    op.create_index("ix_dispatch_log_status", "dispatch_log", ["status"])


def downgrade() -> None:
    op.drop_index("ix_dispatch_log_status", table_name="dispatch_log")
    op.drop_index("ix_dispatch_log_kind", table_name="dispatch_log")
    op.drop_table("dispatch_log")
