"""Provenance entries and the transaction audit trail."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    func,
)

from rcn_api.db.base import Base
from rcn_api.models.customer import enum_values


class RcnSourceType(str, Enum):
    """Origin of credited RCN."""

    SHOP_REPAIR = "shop_repair"
    REFERRAL_BONUS = "referral_bonus"
    TIER_BONUS = "tier_bonus"
    PROMOTION = "promotion"
    MARKET_PURCHASE = "market_purchase"
    GIFT = "gift"


class TransactionType(str, Enum):
    MINT = "mint"
    REDEEM = "redeem"
    TRANSFER_OUT = "transfer_out"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class RcnSource(Base):
    """Immutable record of one credit event and where the tokens came from."""

    __tablename__ = "customer_rcn_sources"
    __table_args__ = (
        Index("ix_customer_rcn_sources_customer_earned", "customer_address", "earned_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_address = Column(String(42), ForeignKey("customers.address"), nullable=False)
    source_type = Column(SqlEnum(RcnSourceType, name="rcn_source_type", values_callable=enum_values), nullable=False)
    source_shop_id = Column(String, nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    transaction_id = Column(String, nullable=False, unique=True)
    is_redeemable = Column(Boolean, nullable=False, default=True, server_default="true")
    metadata_json = Column("metadata", JSON, nullable=True)
    earned_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LedgerTransaction(Base):
    """Append-only mint/redeem/transfer audit row from which balances can be rebuilt."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_customer_type", "customer_address", "type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(SqlEnum(TransactionType, name="ledger_transaction_type", values_callable=enum_values), nullable=False)
    customer_address = Column(String(42), ForeignKey("customers.address"), nullable=False)
    shop_id = Column(String, nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    # Portion of a debit drawn from earned balance; zero for mints.
    earned_amount = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    status = Column(
        SqlEnum(TransactionStatus, name="ledger_transaction_status", values_callable=enum_values),
        nullable=False,
        default=TransactionStatus.CONFIRMED,
        server_default=TransactionStatus.CONFIRMED.value,
    )
    reason = Column(String, nullable=True)
    transaction_hash = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    occurred_at = Column("timestamp", DateTime(timezone=True), nullable=False, server_default=func.now())
