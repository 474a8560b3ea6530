"""Progress records and attempt history."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261018_01_progress_records"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "progress_records",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("sub_unit_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "unit_id", "kind", "sub_unit_index", name="uq_progress_records_natural_key"),
    )
    op.create_index("ix_progress_records_user", "progress_records", ["user_id"])

    op.create_table(
        "progress_attempts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("sub_unit_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed", sa.Boolean(), nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "user_id",
            "unit_id",
            "kind",
            "sub_unit_index",
            "recorded_at",
            name="uq_progress_attempts_event",
        ),
    )
    op.create_index("ix_progress_attempts_user", "progress_attempts", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_progress_attempts_user", table_name="progress_attempts")
    op.drop_table("progress_attempts")
    op.drop_index("ix_progress_records_user", table_name="progress_records")
    op.drop_table("progress_records")
