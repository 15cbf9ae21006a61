"""Customer and shop directory models."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    Integer,
    Numeric,
    String,
    func,
)

from rcn_api.db.base import Base
from rcn_api.domain.tiers import CustomerTier


def enum_values(enum_cls) -> list[str]:
    """Persist enum values rather than member names."""

    return [member.value for member in enum_cls]


class Customer(Base):
    """Wallet holder earning and redeeming RCN.

    ``lifetime_earnings``, ``tier`` and ``home_shop_id`` are projections of the
    provenance ledger and are only written by the ledger services.
    """

    __tablename__ = "customers"

    address = Column(String(42), primary_key=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    lifetime_earnings = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    tier = Column(
        SqlEnum(CustomerTier, name="customer_tier", values_callable=enum_values),
        nullable=False,
        default=CustomerTier.BRONZE,
        server_default=CustomerTier.BRONZE.value,
    )
    daily_earnings = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    monthly_earnings = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    last_earned_date = Column(Date, nullable=True)
    home_shop_id = Column(String, nullable=True)
    referral_code = Column(String(16), nullable=True, unique=True)
    referred_by = Column(String(42), nullable=True)
    referral_count = Column(Integer, nullable=False, default=0, server_default="0")
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Shop(Base):
    """Participating repair shop."""

    __tablename__ = "shops"

    shop_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    wallet_address = Column(String(42), nullable=True)
    active = Column(Boolean, nullable=False, default=True, server_default="true")
    verified = Column(Boolean, nullable=False, default=False, server_default="false")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
