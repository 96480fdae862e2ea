from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, func
from sqlalchemy.dialects.postgresql import UUID

from smartpick_api.db.base import Base, enum_values


class EscrowHoldStatus(str, Enum):
    OPEN = "OPEN"
    RELEASED = "RELEASED"
    CAPTURED = "CAPTURED"


class EscrowHold(Base):
    """Points withheld from a customer against one reservation."""

    __tablename__ = "escrow_holds"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    # No FK: the hold is opened before the reservation row exists in the same transaction.
    reservation_id = Column(UUID(as_uuid=True), nullable=False, unique=True)
    customer_account_id = Column(UUID(as_uuid=True), ForeignKey("points_accounts.id"), nullable=False)
    partner_account_id = Column(UUID(as_uuid=True), ForeignKey("points_accounts.id"), nullable=True)
    points = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(EscrowHoldStatus, name="escrow_hold_status", values_callable=enum_values),
        nullable=False,
        default=EscrowHoldStatus.OPEN,
    )
    opened_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    resolved_at = Column(DateTime(timezone=True), nullable=True)
