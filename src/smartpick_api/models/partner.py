"""Partner catalog rows the engine reads (offers, pricing, quantity)."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from smartpick_api.db.base import Base, enum_values


class PartnerStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    BLOCKED = "blocked"


class OfferStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    SOLD_OUT = "sold_out"
    EXPIRED = "expired"


class Partner(Base):
    __tablename__ = "partners"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    business_name = Column(String, nullable=False)
    status = Column(
        SqlEnum(PartnerStatus, name="partner_status", values_callable=enum_values),
        nullable=False,
        default=PartnerStatus.APPROVED,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Offer(Base):
    __tablename__ = "offers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    partner_id = Column(UUID(as_uuid=True), ForeignKey("partners.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    category = Column(String(64), nullable=False, default="other")
    original_price = Column(Numeric(12, 2), nullable=False)
    smart_price = Column(Numeric(12, 2), nullable=False)
    points_cost = Column(Integer, nullable=False, default=5, server_default="5")
    quantity_total = Column(Integer, nullable=False)
    quantity_available = Column(Integer, nullable=False)
    quantity_claimed = Column(Integer, nullable=False, default=0, server_default="0")
    pickup_start = Column(DateTime(timezone=True), nullable=True)
    pickup_end = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        SqlEnum(OfferStatus, name="offer_status", values_callable=enum_values),
        nullable=False,
        default=OfferStatus.ACTIVE,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
