"""Shop promo codes and their usage audit rows."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)

from rcn_api.db.base import Base
from rcn_api.domain.promo_rules import PromoBonusType
from rcn_api.models.customer import enum_values


class PromoCode(Base):
    """Shop-issued bonus rule.

    ``times_used`` and ``total_bonus_issued`` only move together with a new
    ``PromoCodeUse`` row.
    """

    __tablename__ = "promo_codes"
    __table_args__ = (
        UniqueConstraint("shop_id", "code", name="uq_promo_codes_shop_code"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(32), nullable=False)
    shop_id = Column(String, ForeignKey("shops.shop_id"), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    bonus_type = Column(SqlEnum(PromoBonusType, name="promo_bonus_type", values_callable=enum_values), nullable=False)
    bonus_value = Column(Numeric(14, 2), nullable=False)
    max_bonus = Column(Numeric(14, 2), nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    total_usage_limit = Column(Integer, nullable=True)
    per_customer_limit = Column(Integer, nullable=False, default=1, server_default="1")
    times_used = Column(Integer, nullable=False, default=0, server_default="0")
    total_bonus_issued = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class PromoCodeUse(Base):
    __tablename__ = "promo_code_uses"
    __table_args__ = (
        Index("ix_promo_code_uses_code_customer", "promo_code_id", "customer_address"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    promo_code_id = Column(Integer, ForeignKey("promo_codes.id", ondelete="CASCADE"), nullable=False)
    customer_address = Column(String(42), nullable=False)
    shop_id = Column(String, nullable=False)
    base_reward = Column(Numeric(14, 2), nullable=False)
    bonus_amount = Column(Numeric(14, 2), nullable=False)
    total_reward = Column(Numeric(14, 2), nullable=False)
    transaction_id = Column(String, nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
