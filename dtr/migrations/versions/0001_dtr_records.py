"""Create DTR records, entries and audit log tables

Revision ID: 0001_dtr_records
Revises:
Create Date: 2026-10-19 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_dtr_records"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

dtr_record_status = postgresql.ENUM(
    "draft",
    "submitted",
    "approved",
    "rejected",
    name="dtr_record_status",
    create_type=False,
)
dtr_confirmation_status = postgresql.ENUM(
    "unconfirmed",
    "confirmed",
    name="dtr_confirmation_status",
    create_type=False,
)
dtr_excused_status = postgresql.ENUM(
    "none",
    "excused",
    name="dtr_excused_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "OWNER",
    "OFFICE",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (dtr_record_status, dtr_confirmation_status, dtr_excused_status, audit_actor_type):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "dtr_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("department", sa.String(length=255), nullable=True),
        sa.Column("duty_hours", sa.String(length=255), nullable=True),
        sa.Column("status", dtr_record_status, nullable=False, server_default=sa.text("'draft'")),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_by", sa.String(length=255), nullable=True),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("total_monthly_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("user_id", "month", "year", name="uq_dtr_records_user_period"),
    )
    op.create_index("ix_dtr_records_user_id", "dtr_records", ["user_id"], unique=False)

    op.create_table(
        "dtr_entries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("day", sa.Integer(), nullable=False),
        sa.Column(
            "shifts",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("total_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("late_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("undertime_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("''")),
        sa.Column("status_override", sa.String(length=32), nullable=True),
        sa.Column(
            "confirmation_status",
            dtr_confirmation_status,
            nullable=False,
            server_default=sa.text("'unconfirmed'"),
        ),
        sa.Column("confirmed_by", sa.String(length=255), nullable=True),
        sa.Column("confirmed_by_profile", sa.String(length=255), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("excused_status", dtr_excused_status, nullable=False, server_default=sa.text("'none'")),
        sa.Column("excused_reason", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "edit_history",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("revision", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["record_id"], ["dtr_records.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("record_id", "day", name="uq_dtr_entries_record_day"),
    )
    op.create_index("ix_dtr_entries_record_id", "dtr_entries", ["record_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_dtr_entries_record_id", table_name="dtr_entries")
    op.drop_table("dtr_entries")
    op.drop_index("ix_dtr_records_user_id", table_name="dtr_records")
    op.drop_table("dtr_records")

    bind = op.get_bind()
    for enum_type in (audit_actor_type, dtr_excused_status, dtr_confirmation_status, dtr_record_status):
        enum_type.drop(bind, checkfirst=True)
