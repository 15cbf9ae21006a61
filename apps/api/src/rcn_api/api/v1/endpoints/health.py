from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.core.settings import settings
from rcn_api.db.session import get_session
from rcn_api.observability.scheduler import get_ledger_scheduler_store


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]
    scheduler: Dict[str, object] | None = None


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as error:
        components["database"] = ComponentStatus(status="error", detail=f"Database unreachable ({error.__class__.__name__})")
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    scheduler = getattr(request.app.state, "ledger_job_scheduler", None)
    scheduler_payload: Dict[str, object] | None = None
    if settings.ledger_scheduler_enabled and scheduler is not None:
        running = bool(scheduler.is_running)
        scheduler_status: Literal["ready", "starting", "disabled", "error"] = "ready" if running else "starting"
        detail = None if running else "Ledger scheduler not running"
        scheduler_payload = scheduler.health()
        snapshot = get_ledger_scheduler_store().snapshot()
        failing_jobs = [
            job_id for job_id, job in snapshot["jobs"].items() if job["totals"]["consecutive_failures"] > 0
        ]
        if failing_jobs:
            scheduler_status = "error"
            detail = f"Jobs failing: {', '.join(sorted(failing_jobs))}"
            status = "error"
        elif not running and status == "ready":
            status = "degraded"
        components["ledger_scheduler"] = ComponentStatus(status=scheduler_status, detail=detail)
    else:
        components["ledger_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Ledger scheduler disabled via settings",
        )

    if settings.blockchain_minting_enabled:
        if settings.minter_gateway_url:
            components["token_settlement"] = ComponentStatus(status="ready", detail=settings.minter_gateway_url)
        else:
            components["token_settlement"] = ComponentStatus(
                status="error",
                detail="Minting enabled without a gateway URL",
            )
            status = "error"
    else:
        components["token_settlement"] = ComponentStatus(
            status="disabled",
            detail="Ledger-only mode, credits are not settled on chain",
        )

    return ReadinessPayload(status=status, components=components, scheduler=scheduler_payload)
