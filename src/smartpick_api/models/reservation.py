from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from smartpick_api.db.base import Base, enum_values


class ReservationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PICKED_UP = "PICKED_UP"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    FAILED_PICKUP = "FAILED_PICKUP"


TERMINAL_RESERVATION_STATUSES = frozenset(
    {
        ReservationStatus.PICKED_UP,
        ReservationStatus.CANCELLED,
        ReservationStatus.EXPIRED,
        ReservationStatus.FAILED_PICKUP,
    }
)


class Reservation(Base):
    """A customer's claim on a quantity of an offer."""

    __tablename__ = "reservations"
    __table_args__ = (
        Index("ix_reservations_status_expires_at", "status", "expires_at"),
        Index("ix_reservations_customer_status", "customer_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    partner_id = Column(UUID(as_uuid=True), ForeignKey("partners.id", ondelete="CASCADE"), nullable=False, index=True)
    offer_id = Column(UUID(as_uuid=True), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False)
    status = Column(
        SqlEnum(ReservationStatus, name="reservation_status", values_callable=enum_values),
        nullable=False,
        default=ReservationStatus.ACTIVE,
    )
    quantity = Column(Integer, nullable=False)
    points_spent = Column(Integer, nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)
    qr_code = Column(String(64), nullable=False, unique=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
