"""SQLAlchemy models package."""

from .customer import Customer, Shop  # noqa: F401
from .ledger import (  # noqa: F401
    LedgerTransaction,
    RcnSource,
    RcnSourceType,
    TransactionStatus,
    TransactionType,
)
from .promo import PromoCode, PromoCodeUse  # noqa: F401
from .redemption import RedemptionSession, RedemptionSessionStatus  # noqa: F401
from .referral import Referral, ReferralStatus  # noqa: F401
