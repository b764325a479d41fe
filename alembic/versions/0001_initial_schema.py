"""initial drawing engine schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _timestamps(server_default: bool = False) -> list[sa.Column]:
    default = sa.func.now() if server_default else None
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=default),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=default),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("in_app_id", sa.String(length=64), nullable=False),
        sa.Column("nickname", sa.String(length=50), nullable=True),
        sa.Column("lotteries_entered", sa.Integer(), nullable=False),
        sa.Column("total_tickets", sa.Integer(), nullable=False),
        sa.Column("lotteries_won", sa.Integer(), nullable=False),
        sa.Column("total_winnings", sa.Float(), nullable=False),
        sa.Column("last_entry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_win_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(server_default=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
        sa.UniqueConstraint("in_app_id", name=op.f("uq_users_in_app_id")),
    )

    op.create_table(
        "recurrence_categories",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("internal_name", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("entry_kind", sa.String(length=20), nullable=False),
        sa.Column("entry_cost", sa.Float(), nullable=False),
        sa.Column("platform_fee", sa.Float(), nullable=False),
        sa.Column("action_value", sa.Float(), nullable=False),
        sa.Column("max_tickets_per_user", sa.Integer(), nullable=False),
        sa.Column("min_participants", sa.Integer(), nullable=False),
        sa.Column("cadence", sa.String(length=10), nullable=False),
        sa.Column("draw_time", sa.String(length=5), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=True),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("extension_window_hours", sa.Float(), nullable=False),
        sa.Column("max_extensions", sa.Integer(), nullable=False),
        sa.Column("event_structure", sa.String(length=32), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_recurrence_categories")),
        sa.UniqueConstraint("internal_name", name="uq_recurrence_categories_internal_name"),
        sa.CheckConstraint(
            "entry_kind IN ('payment','action')",
            name=op.f("ck_recurrence_categories_entry_kind_enum"),
        ),
        sa.CheckConstraint(
            "cadence IN ('daily','weekly','monthly')",
            name=op.f("ck_recurrence_categories_cadence_enum"),
        ),
        sa.CheckConstraint(
            "max_tickets_per_user > 0",
            name=op.f("ck_recurrence_categories_max_tickets_positive"),
        ),
        sa.CheckConstraint(
            "max_extensions >= 0",
            name=op.f("ck_recurrence_categories_max_extensions_non_negative"),
        ),
    )

    op.create_table(
        "drawing_instances",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("participant_ticket_count", sa.Integer(), nullable=False),
        sa.Column("prize_pool", sa.Float(), nullable=False),
        sa.Column("scheduled_draw_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("extension_count", sa.Integer(), nullable=False),
        sa.Column("last_extended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_draw_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("drawing_summary", sa.JSON(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_drawing_instances")),
        sa.UniqueConstraint("code", name=op.f("uq_drawing_instances_code")),
        sa.ForeignKeyConstraint(
            ["category_id"],
            ["recurrence_categories.id"],
            name=op.f("fk_drawing_instances_category_id_recurrence_categories"),
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint(
            "status IN ('active','drawing','completed','cancelled')",
            name=op.f("ck_drawing_instances_status_enum"),
        ),
        sa.CheckConstraint(
            "participant_ticket_count >= 0",
            name=op.f("ck_drawing_instances_participant_count_non_negative"),
        ),
        sa.CheckConstraint(
            "extension_count >= 0",
            name=op.f("ck_drawing_instances_extension_count_non_negative"),
        ),
    )
    op.create_index(
        op.f("ix_drawing_instances_category_id"), "drawing_instances", ["category_id"]
    )
    op.create_index(
        "ix_drawing_instances_status_scheduled",
        "drawing_instances",
        ["status", "scheduled_draw_time"],
    )
    op.create_index(
        "uq_drawing_instances_active_category",
        "drawing_instances",
        ["category_id"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("instance_id", sa.Integer(), nullable=False),
        sa.Column("user_id", ID_TYPE, nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(length=20), nullable=False),
        sa.Column("ticket_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("payment_ref", sa.String(length=128), nullable=True),
        sa.Column("action_ref", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_entries")),
        sa.ForeignKeyConstraint(
            ["instance_id"],
            ["drawing_instances.id"],
            name=op.f("fk_entries_instance_id_drawing_instances"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_entries_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["category_id"],
            ["recurrence_categories.id"],
            name=op.f("fk_entries_category_id_recurrence_categories"),
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint("ticket_count > 0", name=op.f("ck_entries_ticket_count_positive")),
        sa.CheckConstraint(
            "method IN ('payment','rewarded_action')", name=op.f("ck_entries_method_enum")
        ),
        sa.CheckConstraint(
            "status IN ('confirmed','pending')", name=op.f("ck_entries_status_enum")
        ),
    )
    op.create_index(op.f("ix_entries_user_id"), "entries", ["user_id"])
    op.create_index("ix_entries_instance_status", "entries", ["instance_id", "status"])

    op.create_table(
        "winners",
        sa.Column("instance_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("user_id", ID_TYPE, nullable=False),
        sa.Column("entry_id", sa.Integer(), nullable=True),
        sa.Column("percentage", sa.Float(), nullable=False),
        sa.Column("gross_amount", sa.Float(), nullable=False),
        sa.Column("net_amount", sa.Float(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("ticket_index", sa.Integer(), nullable=False),
        sa.Column("selection_index", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("instance_id", "position", name=op.f("pk_winners")),
        sa.UniqueConstraint("instance_id", "user_id", name="uq_winners_instance_user"),
        sa.ForeignKeyConstraint(
            ["instance_id"],
            ["drawing_instances.id"],
            name=op.f("fk_winners_instance_id_drawing_instances"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_winners_user_id_users"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["entry_id"],
            ["entries.id"],
            name=op.f("fk_winners_entry_id_entries"),
            ondelete="SET NULL",
        ),
        sa.CheckConstraint("position > 0", name=op.f("ck_winners_position_positive")),
        sa.CheckConstraint(
            "net_amount >= 0", name=op.f("ck_winners_net_amount_non_negative")
        ),
        sa.CheckConstraint(
            "status IN ('pending_approval','approved','transferred','rejected')",
            name=op.f("ck_winners_status_enum"),
        ),
    )
    op.create_index(op.f("ix_winners_user_id"), "winners", ["user_id"])
    op.create_index("ix_winners_status", "winners", ["status"])

    op.create_table(
        "ticket_quota_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", ID_TYPE, nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("period_key", sa.String(length=16), nullable=False),
        sa.Column("period_ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("tickets_used", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_ticket_quota_records")),
        sa.UniqueConstraint(
            "user_id", "category_id", "period_key", name="uq_ticket_quota_period"
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_ticket_quota_records_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["category_id"],
            ["recurrence_categories.id"],
            name=op.f("fk_ticket_quota_records_category_id_recurrence_categories"),
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "tickets_used >= 0",
            name=op.f("ck_ticket_quota_records_tickets_used_non_negative"),
        ),
    )
    op.create_index(
        op.f("ix_ticket_quota_records_period_ends_at"),
        "ticket_quota_records",
        ["period_ends_at"],
    )

    op.create_table(
        "drawing_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("instance_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=40), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_drawing_logs")),
        sa.ForeignKeyConstraint(
            ["instance_id"],
            ["drawing_instances.id"],
            name=op.f("fk_drawing_logs_instance_id_drawing_instances"),
            ondelete="SET NULL",
        ),
        sa.CheckConstraint(
            "action IN ('drawing_completed','drawing_extended',"
            "'drawing_cancelled','drawing_error')",
            name=op.f("ck_drawing_logs_action_enum"),
        ),
    )
    op.create_index(op.f("ix_drawing_logs_instance_id"), "drawing_logs", ["instance_id"])

    op.create_table(
        "refund_requests",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("instance_id", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.Integer(), nullable=False),
        sa.Column("user_id", ID_TYPE, nullable=False),
        sa.Column("payment_ref", sa.String(length=128), nullable=True),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_refund_requests")),
        sa.UniqueConstraint("entry_id", name=op.f("uq_refund_requests_entry_id")),
        sa.ForeignKeyConstraint(
            ["instance_id"],
            ["drawing_instances.id"],
            name=op.f("fk_refund_requests_instance_id_drawing_instances"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["entry_id"],
            ["entries.id"],
            name=op.f("fk_refund_requests_entry_id_entries"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_refund_requests_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "status IN ('pending','processed','failed')",
            name=op.f("ck_refund_requests_status_enum"),
        ),
    )
    op.create_index(
        op.f("ix_refund_requests_instance_id"), "refund_requests", ["instance_id"]
    )


def downgrade() -> None:
    op.drop_table("refund_requests")
    op.drop_table("drawing_logs")
    op.drop_table("ticket_quota_records")
    op.drop_table("winners")
    op.drop_table("entries")
    op.drop_index("uq_drawing_instances_active_category", table_name="drawing_instances")
    op.drop_table("drawing_instances")
    op.drop_table("recurrence_categories")
    op.drop_table("users")
