from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from rcn_api.domain.promo_rules import PromoBonusType
from rcn_api.models.redemption import RedemptionSessionStatus
from rcn_api.models.referral import ReferralStatus


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class _Response(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class RedemptionVerifyRequest(_Request):
    customer_address: str = Field(..., alias="customerAddress")
    shop_id: str = Field(..., alias="shopId")
    amount: Decimal


class RedemptionDecisionResponse(_Response):
    can_redeem: bool = Field(..., alias="canRedeem")
    requested_amount: float = Field(..., alias="requestedAmount")
    earned_balance: float = Field(..., alias="earnedBalance")
    max_redeemable: float = Field(..., alias="maxRedeemable")
    is_home_shop: bool = Field(..., alias="isHomeShop")
    home_shop_id: str | None = Field(None, alias="homeShopId")
    cross_shop_limit: float = Field(..., alias="crossShopLimit")
    message: str


class RedemptionBatchVerifyRequest(_Request):
    requests: list[RedemptionVerifyRequest] = Field(..., min_length=1, max_length=100)


class RedemptionBatchItemResponse(_Response):
    index: int
    customer_address: str = Field(..., alias="customerAddress")
    shop_id: str = Field(..., alias="shopId")
    can_redeem: bool = Field(..., alias="canRedeem")
    decision: RedemptionDecisionResponse | None = None
    error: str | None = None
    message: str | None = None


class EarnedBalanceResponse(_Response):
    address: str
    earned_balance: float = Field(..., alias="earnedBalance")
    total_balance: float = Field(..., alias="totalBalance")
    market_balance: float = Field(..., alias="marketBalance")
    home_shop_id: str | None = Field(None, alias="homeShopId")


class BalanceSnapshotResponse(_Response):
    address: str
    lifetime_earnings: float = Field(..., alias="lifetimeEarnings")
    total_balance: float = Field(..., alias="totalBalance")
    earned_balance: float = Field(..., alias="earnedBalance")
    market_balance: float = Field(..., alias="marketBalance")
    redeemed_total: float = Field(..., alias="redeemedTotal")
    tier: str
    next_tier: str | None = Field(None, alias="nextTier")
    amount_to_next_tier: float = Field(..., alias="amountToNextTier")
    daily_remaining: float = Field(..., alias="dailyRemaining")
    monthly_remaining: float = Field(..., alias="monthlyRemaining")
    home_shop_id: str | None = Field(None, alias="homeShopId")
    earnings_by_shop: dict[str, float] = Field(default_factory=dict, alias="earningsByShop")
    is_active: bool = Field(..., alias="isActive")


class ShopEarningsResponse(_Response):
    shop_id: str = Field(..., alias="shopId")
    shop_name: str | None = Field(None, alias="shopName")
    total_earned: float = Field(..., alias="totalEarned")
    by_source: dict[str, float] = Field(default_factory=dict, alias="bySource")
    last_earned_at: datetime | None = Field(None, alias="lastEarnedAt")


class EarningSourcesResponse(_Response):
    address: str
    shops: list[ShopEarningsResponse]
    unattributed: dict[str, float] = Field(default_factory=dict)
    total_shops: int = Field(..., alias="totalShops")
    primary_shop_id: str | None = Field(None, alias="primaryShopId")
    total_earned: float = Field(..., alias="totalEarned")


class RedemptionSessionCreateRequest(_Request):
    customer_address: str = Field(..., alias="customerAddress")
    amount: Decimal


class RedemptionSessionApproveRequest(_Request):
    signature: str


class RedemptionSessionUseRequest(_Request):
    amount: Decimal | None = None


class RedemptionSessionQrRequest(_Request):
    qr_code: str = Field(..., alias="qrCode")


class RedemptionSessionResponse(_Response):
    session_id: str = Field(..., alias="sessionId")
    customer_address: str = Field(..., alias="customerAddress")
    shop_id: str = Field(..., alias="shopId")
    max_amount: float = Field(..., alias="maxAmount")
    status: RedemptionSessionStatus
    created_at: datetime = Field(..., alias="createdAt")
    expires_at: datetime = Field(..., alias="expiresAt")
    approved_at: datetime | None = Field(None, alias="approvedAt")
    used_at: datetime | None = Field(None, alias="usedAt")
    qr_code: str | None = Field(None, alias="qrCode")
    redeemed_amount: float | None = Field(None, alias="redeemedAmount")
    metadata: dict | None = Field(
        None,
        alias="metadata",
        validation_alias=AliasChoices("metadata_json", "metadata"),
    )


class RedemptionUseResponse(_Response):
    session: RedemptionSessionResponse
    transaction_id: int = Field(..., alias="transactionId")
    amount: float


class RepairRewardRequest(_Request):
    customer_address: str = Field(..., alias="customerAddress")
    repair_amount: Decimal = Field(..., alias="repairAmount")
    promo_code: str | None = Field(None, alias="promoCode")
    skip_tier_bonus: bool = Field(False, alias="skipTierBonus")
    reference: str | None = None


class ReferralOutcome(_Response):
    completed: bool
    referrer_address: str | None = Field(None, alias="referrerAddress")
    referrer_reward: float | None = Field(None, alias="referrerReward")
    referee_reward: float | None = Field(None, alias="refereeReward")
    error: str | None = None
    message: str | None = None


class RepairRewardResponse(_Response):
    customer_address: str = Field(..., alias="customerAddress")
    shop_id: str = Field(..., alias="shopId")
    base_reward: float = Field(..., alias="baseReward")
    tier_bonus: float = Field(..., alias="tierBonus")
    promo_bonus: float = Field(..., alias="promoBonus")
    total_reward: float = Field(..., alias="totalReward")
    old_tier: str = Field(..., alias="oldTier")
    new_tier: str = Field(..., alias="newTier")
    customer_created: bool = Field(..., alias="customerCreated")
    promo_code: str | None = Field(None, alias="promoCode")
    transaction_ids: list[str] = Field(default_factory=list, alias="transactionIds")
    referral: ReferralOutcome | None = None


class TransferRequest(_Request):
    to_address: str = Field(..., alias="toAddress")
    amount: Decimal
    message: str | None = Field(None, max_length=280)


class TransferResponse(_Response):
    from_address: str = Field(..., alias="fromAddress")
    to_address: str = Field(..., alias="toAddress")
    amount: float
    earned_share: float = Field(..., alias="earnedShare")
    recipient_created: bool = Field(..., alias="recipientCreated")


class MarketPurchaseRequest(_Request):
    customer_address: str = Field(..., alias="customerAddress")
    amount: Decimal
    reference: str | None = None


class CreditResponse(_Response):
    transaction_id: str = Field(..., alias="transactionId")
    customer_address: str = Field(..., alias="customerAddress")
    amount: float
    source_type: str = Field(..., alias="sourceType")
    is_redeemable: bool = Field(..., alias="isRedeemable")
    created: bool


class PromoCodeCreateRequest(_Request):
    code: str = Field(..., min_length=1, max_length=32)
    name: str
    description: str | None = None
    bonus_type: PromoBonusType = Field(..., alias="bonusType")
    bonus_value: Decimal = Field(..., alias="bonusValue")
    max_bonus: Decimal | None = Field(None, alias="maxBonus")
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")
    total_usage_limit: int | None = Field(None, alias="totalUsageLimit")
    per_customer_limit: int = Field(1, alias="perCustomerLimit")


class PromoCodeResponse(_Response):
    id: int
    code: str
    shop_id: str = Field(..., alias="shopId")
    name: str
    description: str | None = None
    bonus_type: PromoBonusType = Field(..., alias="bonusType")
    bonus_value: float = Field(..., alias="bonusValue")
    max_bonus: float | None = Field(None, alias="maxBonus")
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")
    is_active: bool = Field(..., alias="isActive")
    total_usage_limit: int | None = Field(None, alias="totalUsageLimit")
    per_customer_limit: int = Field(..., alias="perCustomerLimit")
    times_used: int = Field(..., alias="timesUsed")
    total_bonus_issued: float = Field(..., alias="totalBonusIssued")


class PromoRedeemRequest(_Request):
    code: str
    customer_address: str = Field(..., alias="customerAddress")
    base_reward: Decimal = Field(..., alias="baseReward")


class PromoEvaluationResponse(_Response):
    promo_code_id: int = Field(..., alias="promoCodeId")
    code: str
    bonus_type: PromoBonusType = Field(..., alias="bonusType")
    base_reward: float = Field(..., alias="baseReward")
    bonus_amount: float = Field(..., alias="bonusAmount")
    is_valid: bool = Field(True, alias="isValid")


class PromoUseResponse(_Response):
    evaluation: PromoEvaluationResponse
    use_id: int = Field(..., alias="useId")
    transaction_id: str = Field(..., alias="transactionId")
    total_reward: float = Field(..., alias="totalReward")


class PromoStatsResponse(_Response):
    promo_code_id: int = Field(..., alias="promoCodeId")
    code: str
    times_used: int = Field(..., alias="timesUsed")
    total_bonus_issued: float = Field(..., alias="totalBonusIssued")
    recorded_uses: int = Field(..., alias="recordedUses")
    unique_customers: int = Field(..., alias="uniqueCustomers")
    recorded_bonus: float = Field(..., alias="recordedBonus")
    is_active: bool = Field(..., alias="isActive")


class ReferralRegisterRequest(_Request):
    code: str


class ReferralResponse(_Response):
    code: str = Field(..., alias="code", validation_alias=AliasChoices("referral_code", "code"))
    referrer_address: str = Field(..., alias="referrerAddress")
    referee_address: str | None = Field(None, alias="refereeAddress")
    status: ReferralStatus
    created_at: datetime = Field(..., alias="createdAt")
    expires_at: datetime = Field(..., alias="expiresAt")
    completed_at: datetime | None = Field(None, alias="completedAt")
