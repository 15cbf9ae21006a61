"""RCN ledger core tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


customer_tier = sa.Enum("BRONZE", "SILVER", "GOLD", name="customer_tier")
rcn_source_type = sa.Enum(
    "shop_repair",
    "referral_bonus",
    "tier_bonus",
    "promotion",
    "market_purchase",
    "gift",
    name="rcn_source_type",
)
transaction_type = sa.Enum("mint", "redeem", "transfer_out", name="ledger_transaction_type")
transaction_status = sa.Enum("pending", "confirmed", "failed", name="ledger_transaction_status")
session_status = sa.Enum("pending", "approved", "rejected", "expired", "used", name="redemption_session_status")
promo_bonus_type = sa.Enum("fixed", "percentage", name="promo_bonus_type")
referral_status = sa.Enum("pending", "completed", "expired", name="referral_status")

_ENUMS = (
    customer_tier,
    rcn_source_type,
    transaction_type,
    transaction_status,
    session_status,
    promo_bonus_type,
    referral_status,
)


def _money(name: str, *, nullable: bool = False, default: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(14, 2),
        nullable=nullable,
        server_default="0" if default else None,
    )


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("address", sa.String(length=42), primary_key=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        _money("lifetime_earnings", default=True),
        sa.Column("tier", customer_tier, nullable=False, server_default="BRONZE"),
        _money("daily_earnings", default=True),
        _money("monthly_earnings", default=True),
        sa.Column("last_earned_date", sa.Date(), nullable=True),
        sa.Column("home_shop_id", sa.String(), nullable=True),
        sa.Column("referral_code", sa.String(length=16), nullable=True, unique=True),
        sa.Column("referred_by", sa.String(length=42), nullable=True),
        sa.Column("referral_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "shops",
        sa.Column("shop_id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("wallet_address", sa.String(length=42), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "customer_rcn_sources",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("customer_address", sa.String(length=42), sa.ForeignKey("customers.address"), nullable=False),
        sa.Column("source_type", rcn_source_type, nullable=False),
        sa.Column("source_shop_id", sa.String(), nullable=True),
        _money("amount"),
        sa.Column("transaction_id", sa.String(), nullable=False, unique=True),
        sa.Column("is_redeemable", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("earned_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_customer_rcn_sources_amount_positive"),
    )
    op.create_index(
        "ix_customer_rcn_sources_customer_earned",
        "customer_rcn_sources",
        ["customer_address", "earned_at"],
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("customer_address", sa.String(length=42), sa.ForeignKey("customers.address"), nullable=False),
        sa.Column("shop_id", sa.String(), nullable=True),
        _money("amount"),
        _money("earned_amount", default=True),
        sa.Column("status", transaction_status, nullable=False, server_default="confirmed"),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("transaction_hash", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_transactions_customer_type", "transactions", ["customer_address", "type"])

    op.create_table(
        "redemption_sessions",
        sa.Column("session_id", sa.String(length=36), primary_key=True),
        sa.Column("customer_address", sa.String(length=42), sa.ForeignKey("customers.address"), nullable=False),
        sa.Column("shop_id", sa.String(), sa.ForeignKey("shops.shop_id"), nullable=False),
        _money("max_amount"),
        sa.Column("status", session_status, nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("qr_code", sa.Text(), nullable=True),
        sa.Column("signature", sa.String(), nullable=True),
        _money("redeemed_amount", nullable=True),
        sa.Column("redemption_transaction_id", sa.Integer(), sa.ForeignKey("transactions.id"), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
    )
    op.create_index(
        "uq_redemption_sessions_pending_pair",
        "redemption_sessions",
        ["customer_address", "shop_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )
    op.create_index("ix_redemption_sessions_status_expires", "redemption_sessions", ["status", "expires_at"])

    op.create_table(
        "promo_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("shop_id", sa.String(), sa.ForeignKey("shops.shop_id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("bonus_type", promo_bonus_type, nullable=False),
        _money("bonus_value"),
        _money("max_bonus", nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("total_usage_limit", sa.Integer(), nullable=True),
        sa.Column("per_customer_limit", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("times_used", sa.Integer(), nullable=False, server_default="0"),
        _money("total_bonus_issued", default=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("shop_id", "code", name="uq_promo_codes_shop_code"),
        sa.CheckConstraint("end_date > start_date", name="ck_promo_codes_window"),
    )

    op.create_table(
        "promo_code_uses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "promo_code_id",
            sa.Integer(),
            sa.ForeignKey("promo_codes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("customer_address", sa.String(length=42), nullable=False),
        sa.Column("shop_id", sa.String(), nullable=False),
        _money("base_reward"),
        _money("bonus_amount"),
        _money("total_reward"),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(
        "ix_promo_code_uses_code_customer",
        "promo_code_uses",
        ["promo_code_id", "customer_address"],
    )

    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("referral_code", sa.String(length=16), nullable=False),
        sa.Column("referrer_address", sa.String(length=42), sa.ForeignKey("customers.address"), nullable=False),
        sa.Column("referee_address", sa.String(length=42), nullable=True),
        sa.Column("status", referral_status, nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reward_transaction_id", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
    )
    op.create_index("ix_referrals_referral_code", "referrals", ["referral_code"], unique=True)
    op.create_index("ix_referrals_referee_address", "referrals", ["referee_address"])


def downgrade() -> None:
    op.drop_index("ix_referrals_referee_address", table_name="referrals")
    op.drop_index("ix_referrals_referral_code", table_name="referrals")
    op.drop_table("referrals")
    op.drop_index("ix_promo_code_uses_code_customer", table_name="promo_code_uses")
    op.drop_table("promo_code_uses")
    op.drop_table("promo_codes")
    op.drop_index("ix_redemption_sessions_status_expires", table_name="redemption_sessions")
    op.drop_index("uq_redemption_sessions_pending_pair", table_name="redemption_sessions")
    op.drop_table("redemption_sessions")
    op.drop_index("ix_transactions_customer_type", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_customer_rcn_sources_customer_earned", table_name="customer_rcn_sources")
    op.drop_table("customer_rcn_sources")
    op.drop_table("shops")
    op.drop_table("customers")

    bind = op.get_bind()
    for enum in reversed(_ENUMS):
        enum.drop(bind, checkfirst=True)
