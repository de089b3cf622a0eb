"""API routes for profit analysis and the pending-work chat summary."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.auth import require_roles
from app.core.logging import logger
from app.models.audit import Actor, UserRole
from app.models.jobs import ProfitSummary
from app.services.logistics_engine import logistics_engine

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/profit", response_model=ProfitSummary)
def profit_analysis(
    group_by: str = Query(default="subcontractor"),
    actor: Actor = Depends(require_roles(UserRole.ACCOUNTANT, UserRole.ADMIN)),
):
    try:
        return logistics_engine.profit_summary(group_by=group_by)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/notifications/daily-summary")
def send_daily_summary(
    actor: Actor = Depends(require_roles(UserRole.DISPATCHER, UserRole.ADMIN)),
):
    try:
        return logistics_engine.send_daily_summary()
    except RuntimeError as exc:
        logger.error("Failed to send daily summary", error=str(exc))
        raise HTTPException(status_code=502, detail=str(exc))
