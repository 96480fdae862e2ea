from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from smartpick_api.db.base import Base


class CancellationEvent(Base):
    """Cancellation timestamp feeding the rolling cooldown window."""

    __tablename__ = "cancellation_events"
    __table_args__ = (
        Index("ix_cancellation_events_user_cancelled_at", "user_id", "cancelled_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reservation_id = Column(UUID(as_uuid=True), ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=False)


class CooldownLift(Base):
    """Paid cooldown reset; at most one per user per local day."""

    __tablename__ = "cooldown_lifts"
    __table_args__ = (
        UniqueConstraint("user_id", "lift_date", name="uq_cooldown_lifts_user_day"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lift_date = Column(Date, nullable=False)
    points_spent = Column(Integer, nullable=False, default=0)
    lifted_at = Column(DateTime(timezone=True), nullable=False)
