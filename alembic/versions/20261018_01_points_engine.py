"""Points engine: accounts, ledger, escrow, reservations, penalties, cooldown, achievements.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)
NOW = sa.text("CURRENT_TIMESTAMP")

partner_status = sa.Enum("pending", "approved", "blocked", name="partner_status")
offer_status = sa.Enum("active", "paused", "sold_out", "expired", name="offer_status")
owner_type = sa.Enum("customer", "partner", name="points_account_owner_type")
transaction_reason = sa.Enum(
    "reservation-payment",
    "refund",
    "pickup-transfer",
    "achievement-reward",
    "slot-purchase",
    "penalty-lift",
    "cooldown-lift",
    "referral-bonus",
    "admin-adjustment",
    name="points_transaction_reason",
)
hold_status = sa.Enum("OPEN", "RELEASED", "CAPTURED", name="escrow_hold_status")
reservation_status = sa.Enum(
    "ACTIVE", "PICKED_UP", "CANCELLED", "EXPIRED", "FAILED_PICKUP", name="reservation_status"
)
forgiveness_status = sa.Enum("PENDING", "GRANTED", "DENIED", "EXPIRED", name="forgiveness_request_status")
achievement_tier = sa.Enum("bronze", "silver", "gold", "platinum", name="achievement_tier")
requirement_type = sa.Enum(
    "reservations",
    "money_saved",
    "category",
    "unique_partners",
    "partner_loyalty",
    "streak",
    "referrals",
    name="achievement_requirement_type",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="customer"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("max_reservation_quantity", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("referral_code", sa.String(length=16), nullable=True, unique=True),
        sa.Column("referred_by_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "partners",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("business_name", sa.String(), nullable=False),
        sa.Column("status", partner_status, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "offers",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("partner_id", UUID, sa.ForeignKey("partners.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("original_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("smart_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("points_cost", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("quantity_total", sa.Integer(), nullable=False),
        sa.Column("quantity_available", sa.Integer(), nullable=False),
        sa.Column("quantity_claimed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pickup_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pickup_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", offer_status, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_offers_partner_id", "offers", ["partner_id"])

    op.create_table(
        "points_accounts",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("owner_type", owner_type, nullable=False),
        sa.Column("owner_id", UUID, nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("owner_type", "owner_id", name="uq_points_accounts_owner"),
        sa.CheckConstraint("balance >= 0", name="ck_points_accounts_balance_non_negative"),
    )

    op.create_table(
        "points_transactions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column(
            "account_id",
            UUID,
            sa.ForeignKey("points_accounts.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", transaction_reason, nullable=False),
        sa.Column("reservation_id", UUID, nullable=True),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    )
    op.create_index(
        "ix_points_transactions_account_created",
        "points_transactions",
        ["account_id", "created_at"],
    )
    op.create_index("ix_points_transactions_reservation_id", "points_transactions", ["reservation_id"])

    op.create_table(
        "escrow_holds",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("reservation_id", UUID, nullable=False, unique=True),
        sa.Column("customer_account_id", UUID, sa.ForeignKey("points_accounts.id"), nullable=False),
        sa.Column("partner_account_id", UUID, sa.ForeignKey("points_accounts.id"), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("status", hold_status, nullable=False),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "reservations",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("customer_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("partner_id", UUID, sa.ForeignKey("partners.id", ondelete="CASCADE"), nullable=False),
        sa.Column("offer_id", UUID, sa.ForeignKey("offers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", reservation_status, nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("points_spent", sa.Integer(), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("qr_code", sa.String(length=64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_reservations_partner_id", "reservations", ["partner_id"])
    op.create_index("ix_reservations_status_expires_at", "reservations", ["status", "expires_at"])
    op.create_index("ix_reservations_customer_status", "reservations", ["customer_id", "status"])

    op.create_table(
        "penalties",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("no_show_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("suspended_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_offense_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "penalty_offenses",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("penalty_id", UUID, sa.ForeignKey("penalties.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reservation_id", UUID, sa.ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("partner_id", UUID, sa.ForeignKey("partners.id", ondelete="SET NULL"), nullable=True),
        sa.Column("offense_number", sa.Integer(), nullable=False),
        sa.Column("tier", sa.String(length=32), nullable=False),
        sa.Column("suspended_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lift_cost_points", sa.Integer(), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lifted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("forgiven_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    )
    op.create_index("ix_penalty_offenses_penalty_id", "penalty_offenses", ["penalty_id"])

    op.create_table(
        "forgiveness_requests",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("penalty_id", UUID, sa.ForeignKey("penalties.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "offense_id",
            UUID,
            sa.ForeignKey("penalty_offenses.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("partner_id", UUID, sa.ForeignKey("partners.id", ondelete="SET NULL"), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", forgiveness_status, nullable=False),
        sa.Column("partner_message", sa.Text(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    )
    op.create_index("ix_forgiveness_requests_penalty_id", "forgiveness_requests", ["penalty_id"])
    op.create_index("ix_forgiveness_requests_partner_id", "forgiveness_requests", ["partner_id"])

    op.create_table(
        "cancellation_events",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reservation_id", UUID, sa.ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_cancellation_events_user_cancelled_at",
        "cancellation_events",
        ["user_id", "cancelled_at"],
    )

    op.create_table(
        "cooldown_lifts",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("lift_date", sa.Date(), nullable=False),
        sa.Column("points_spent", sa.Integer(), nullable=False),
        sa.Column("lifted_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "lift_date", name="uq_cooldown_lifts_user_day"),
    )

    op.create_table(
        "achievement_definitions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("tier", achievement_tier, nullable=False),
        sa.Column("requirement_type", requirement_type, nullable=False),
        sa.Column("requirement_target", sa.Numeric(12, 2), nullable=False),
        sa.Column("requirement_category", sa.String(length=64), nullable=True),
        sa.Column("reward_points", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    )

    op.create_table(
        "user_achievements",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "achievement_id",
            sa.String(length=64),
            sa.ForeignKey("achievement_definitions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_new", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reward_claimed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reward_claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("points_awarded", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )
    op.create_index("ix_user_achievements_user_id", "user_achievements", ["user_id"])

    op.create_table(
        "user_stats",
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("total_reservations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_money_saved", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("current_streak_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity_date", sa.Date(), nullable=True),
        sa.Column("total_referrals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("category_counts", sa.JSON(), nullable=False),
        sa.Column("partner_visit_counts", sa.JSON(), nullable=False),
        sa.Column("unique_partners_visited", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    )


def downgrade() -> None:
    op.drop_table("user_stats")
    op.drop_index("ix_user_achievements_user_id", table_name="user_achievements")
    op.drop_table("user_achievements")
    op.drop_table("achievement_definitions")
    op.drop_table("cooldown_lifts")
    op.drop_index("ix_cancellation_events_user_cancelled_at", table_name="cancellation_events")
    op.drop_table("cancellation_events")
    op.drop_index("ix_forgiveness_requests_partner_id", table_name="forgiveness_requests")
    op.drop_index("ix_forgiveness_requests_penalty_id", table_name="forgiveness_requests")
    op.drop_table("forgiveness_requests")
    op.drop_index("ix_penalty_offenses_penalty_id", table_name="penalty_offenses")
    op.drop_table("penalty_offenses")
    op.drop_table("penalties")
    op.drop_index("ix_reservations_customer_status", table_name="reservations")
    op.drop_index("ix_reservations_status_expires_at", table_name="reservations")
    op.drop_index("ix_reservations_partner_id", table_name="reservations")
    op.drop_table("reservations")
    op.drop_table("escrow_holds")
    op.drop_index("ix_points_transactions_reservation_id", table_name="points_transactions")
    op.drop_index("ix_points_transactions_account_created", table_name="points_transactions")
    op.drop_table("points_transactions")
    op.drop_table("points_accounts")
    op.drop_index("ix_offers_partner_id", table_name="offers")
    op.drop_table("offers")
    op.drop_table("partners")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (
        requirement_type,
        achievement_tier,
        forgiveness_status,
        reservation_status,
        hold_status,
        transaction_reason,
        owner_type,
        offer_status,
        partner_status,
    ):
        enum_type.drop(bind, checkfirst=True)
