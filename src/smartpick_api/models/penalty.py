"""No-show penalties, individual offenses and partner forgiveness requests."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from smartpick_api.db.base import Base, enum_values


class Penalty(Base):
    """Per-user no-show counter and active suspension window."""

    __tablename__ = "penalties"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    no_show_count = Column(Integer, nullable=False, default=0, server_default="0")
    suspended_until = Column(DateTime(timezone=True), nullable=True)
    last_offense_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class PenaltyOffense(Base):
    """One recorded no-show and the tier it escalated to."""

    __tablename__ = "penalty_offenses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    penalty_id = Column(UUID(as_uuid=True), ForeignKey("penalties.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reservation_id = Column(UUID(as_uuid=True), ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True)
    partner_id = Column(UUID(as_uuid=True), ForeignKey("partners.id", ondelete="SET NULL"), nullable=True)
    offense_number = Column(Integer, nullable=False)
    tier = Column(String(32), nullable=False)
    suspended_until = Column(DateTime(timezone=True), nullable=True)
    lift_cost_points = Column(Integer, nullable=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    lifted_at = Column(DateTime(timezone=True), nullable=True)
    forgiven_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ForgivenessStatus(str, Enum):
    PENDING = "PENDING"
    GRANTED = "GRANTED"
    DENIED = "DENIED"
    EXPIRED = "EXPIRED"


class ForgivenessRequest(Base):
    """Customer appeal against an offense, answered by the affected partner."""

    __tablename__ = "forgiveness_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    penalty_id = Column(UUID(as_uuid=True), ForeignKey("penalties.id", ondelete="CASCADE"), nullable=False, index=True)
    offense_id = Column(UUID(as_uuid=True), ForeignKey("penalty_offenses.id", ondelete="CASCADE"), nullable=False, unique=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    partner_id = Column(UUID(as_uuid=True), ForeignKey("partners.id", ondelete="SET NULL"), nullable=True, index=True)
    message = Column(Text, nullable=False)
    status = Column(
        SqlEnum(ForgivenessStatus, name="forgiveness_request_status", values_callable=enum_values),
        nullable=False,
        default=ForgivenessStatus.PENDING,
    )
    partner_message = Column(Text, nullable=True)
    requested_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
