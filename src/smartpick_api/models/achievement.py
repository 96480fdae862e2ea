"""Achievement catalog, per-user unlocks and the stats they are evaluated against."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from smartpick_api.db.base import Base, enum_values


class AchievementRequirementType(str, Enum):
    RESERVATIONS = "reservations"
    MONEY_SAVED = "money_saved"
    CATEGORY = "category"
    UNIQUE_PARTNERS = "unique_partners"
    PARTNER_LOYALTY = "partner_loyalty"
    STREAK = "streak"
    REFERRALS = "referrals"


class AchievementTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class AchievementDefinition(Base):
    __tablename__ = "achievement_definitions"

    id = Column(String(64), primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(32), nullable=False, default="milestone")
    tier = Column(
        SqlEnum(AchievementTier, name="achievement_tier", values_callable=enum_values),
        nullable=False,
        default=AchievementTier.BRONZE,
    )
    requirement_type = Column(
        SqlEnum(AchievementRequirementType, name="achievement_requirement_type", values_callable=enum_values),
        nullable=False,
    )
    requirement_target = Column(Numeric(12, 2), nullable=False)
    requirement_category = Column(String(64), nullable=True)
    reward_points = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UserAchievement(Base):
    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    achievement_id = Column(String(64), ForeignKey("achievement_definitions.id", ondelete="CASCADE"), nullable=False)
    unlocked_at = Column(DateTime(timezone=True), nullable=False)
    is_new = Column(Boolean, nullable=False, default=True, server_default="true")
    viewed_at = Column(DateTime(timezone=True), nullable=True)
    reward_claimed = Column(Boolean, nullable=False, default=False, server_default="false")
    reward_claimed_at = Column(DateTime(timezone=True), nullable=True)
    points_awarded = Column(Integer, nullable=False, default=0, server_default="0")


class UserStats(Base):
    """Rolling activity aggregate per user."""

    __tablename__ = "user_stats"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    total_reservations = Column(Integer, nullable=False, default=0, server_default="0")
    total_money_saved = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    current_streak_days = Column(Integer, nullable=False, default=0, server_default="0")
    longest_streak_days = Column(Integer, nullable=False, default=0, server_default="0")
    last_activity_date = Column(Date, nullable=True)
    total_referrals = Column(Integer, nullable=False, default=0, server_default="0")
    category_counts = Column(JSON, nullable=False, default=dict)
    partner_visit_counts = Column(JSON, nullable=False, default=dict)
    unique_partners_visited = Column(Integer, nullable=False, default=0, server_default="0")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
