"""Create users, mics and mic_audit tables.

Revision ID: a7c3e9d1f2b4
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "a7c3e9d1f2b4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

document = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "mics",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("data", document, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("recurrence", sa.String(512), nullable=True),
        sa.Column("edit_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_edited_by", sa.String(320), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("edit_version >= 0", name="ck_mics_edit_version_nonnegative"),
    )
    op.create_index("idx_mics_start_date", "mics", ["start_date"])

    # No FK to mics: history must survive the listing.
    op.create_table(
        "mic_audit",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("mic_id", sa.String(36), nullable=False),
        sa.Column("action_type", sa.String(16), nullable=False),
        sa.Column("edit_version", sa.Integer(), nullable=False),
        sa.Column("changed_by", sa.String(320), nullable=False),
        sa.Column("changed_at", sa.DateTime(), nullable=False),
        sa.Column("data", document, nullable=True),
        sa.CheckConstraint("action_type IN ('CREATE', 'UPDATE', 'DELETE')", name="ck_mic_audit_action_type"),
    )
    op.create_index("idx_mic_audit_mic_id", "mic_audit", ["mic_id", "id"])


def downgrade() -> None:
    op.drop_index("idx_mic_audit_mic_id", table_name="mic_audit")
    op.drop_table("mic_audit")
    op.drop_index("idx_mics_start_date", table_name="mics")
    op.drop_table("mics")
    op.drop_table("users")
