"""Customer-to-customer referrals."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, JSON, String, func

from rcn_api.db.base import Base
from rcn_api.models.customer import enum_values


class ReferralStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


class Referral(Base):
    """Referral code issued by a customer and claimed by at most one referee."""

    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    referral_code = Column(String(16), nullable=False, unique=True, index=True)
    referrer_address = Column(String(42), ForeignKey("customers.address"), nullable=False)
    referee_address = Column(String(42), nullable=True, index=True)
    status = Column(
        SqlEnum(ReferralStatus, name="referral_status", values_callable=enum_values),
        nullable=False,
        default=ReferralStatus.PENDING,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    reward_transaction_id = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
