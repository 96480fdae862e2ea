"""Points accounts and the append-only transaction log."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    Index,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from smartpick_api.db.base import Base, enum_values


class AccountOwnerType(str, Enum):
    CUSTOMER = "customer"
    PARTNER = "partner"


class LedgerReason(str, Enum):
    """Reason codes stamped on every balance mutation."""

    RESERVATION_PAYMENT = "reservation-payment"
    REFUND = "refund"
    PICKUP_TRANSFER = "pickup-transfer"
    ACHIEVEMENT_REWARD = "achievement-reward"
    SLOT_PURCHASE = "slot-purchase"
    PENALTY_LIFT = "penalty-lift"
    COOLDOWN_LIFT = "cooldown-lift"
    REFERRAL_BONUS = "referral-bonus"
    ADMIN_ADJUSTMENT = "admin-adjustment"


class PointsAccount(Base):
    """Balance holder for a customer or a partner."""

    __tablename__ = "points_accounts"
    __table_args__ = (
        UniqueConstraint("owner_type", "owner_id", name="uq_points_accounts_owner"),
        CheckConstraint("balance >= 0", name="ck_points_accounts_balance_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    owner_type = Column(
        SqlEnum(AccountOwnerType, name="points_account_owner_type", values_callable=enum_values),
        nullable=False,
    )
    owner_id = Column(UUID(as_uuid=True), nullable=False)
    balance = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    transactions = relationship("LedgerTransaction", back_populates="account", lazy="raise")


class LedgerTransaction(Base):
    """Immutable balance delta."""

    __tablename__ = "points_transactions"
    __table_args__ = (
        Index("ix_points_transactions_account_created", "account_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("points_accounts.id", ondelete="RESTRICT"), nullable=False)
    delta = Column(Integer, nullable=False)
    reason = Column(
        SqlEnum(LedgerReason, name="points_transaction_reason", values_callable=enum_values),
        nullable=False,
    )
    reservation_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    balance_after = Column(Integer, nullable=False)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    account = relationship("PointsAccount", back_populates="transactions")
