from fastapi import APIRouter, Depends

from rcn_api.api.dependencies.security import require_api_key

from .endpoints import balances, directory, earnings, health, promo, redemption, referrals

router = APIRouter()
router.include_router(health.router, tags=["Health"])

_guarded = [Depends(require_api_key)]
router.include_router(directory.router, dependencies=_guarded)
router.include_router(redemption.router, dependencies=_guarded)
router.include_router(balances.router, dependencies=_guarded)
router.include_router(earnings.router, dependencies=_guarded)
router.include_router(promo.router, dependencies=_guarded)
router.include_router(referrals.router, dependencies=_guarded)
