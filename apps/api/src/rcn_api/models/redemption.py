"""Redemption approval sessions."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    text,
)

from rcn_api.db.base import Base
from rcn_api.models.customer import enum_values


class RedemptionSessionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    USED = "used"


class RedemptionSession(Base):
    """Short-lived customer authorization for a shop to debit RCN."""

    __tablename__ = "redemption_sessions"
    __table_args__ = (
        Index(
            "uq_redemption_sessions_pending_pair",
            "customer_address",
            "shop_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_redemption_sessions_status_expires", "status", "expires_at"),
    )

    session_id = Column(String(36), primary_key=True)
    customer_address = Column(String(42), ForeignKey("customers.address"), nullable=False)
    shop_id = Column(String, ForeignKey("shops.shop_id"), nullable=False)
    max_amount = Column(Numeric(14, 2), nullable=False)
    status = Column(
        SqlEnum(RedemptionSessionStatus, name="redemption_session_status", values_callable=enum_values),
        nullable=False,
        default=RedemptionSessionStatus.PENDING,
    )
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    qr_code = Column(Text, nullable=True)
    signature = Column(String, nullable=True)
    redeemed_amount = Column(Numeric(14, 2), nullable=True)
    redemption_transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
