"""API routes for accounting review, billing, payment and the audit trail."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.auth import get_actor, require_roles
from app.core.logging import logger
from app.models.audit import Actor, UserRole
from app.models.jobs import AccountingDecisionRequest, BillingRequest, PaymentRequest
from app.services.logistics_engine import logistics_engine

router = APIRouter(prefix="/accounting", tags=["accounting"])

ACCOUNTING_ROLES = (UserRole.ACCOUNTANT, UserRole.ADMIN)


@router.post("/jobs/{job_id}/decision")
def decide(
    job_id: str,
    request: AccountingDecisionRequest,
    actor: Actor = Depends(require_roles(*ACCOUNTING_ROLES)),
):
    try:
        return logistics_engine.decide_accounting(job_id, request, actor)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except ValueError as exc:
        logger.warning("Accounting decision refused", job_id=job_id, action=request.action.value, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/billing")
def bill_jobs(
    request: BillingRequest,
    actor: Actor = Depends(require_roles(*ACCOUNTING_ROLES)),
):
    try:
        jobs = logistics_engine.bill_jobs(request, actor)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Job not found: {exc.args[0]}")
    except ValueError as exc:
        logger.warning("Billing refused", billing_doc_no=request.billing_doc_no, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))
    return {"billing_doc_no": request.billing_doc_no, "jobs": jobs}


@router.post("/payments")
def record_payment(
    request: PaymentRequest,
    actor: Actor = Depends(require_roles(*ACCOUNTING_ROLES)),
):
    try:
        jobs = logistics_engine.record_payment(request, actor)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Job not found: {exc.args[0]}")
    except ValueError as exc:
        logger.warning("Payment refused", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))
    return {"payment_date": request.payment_date, "jobs": jobs}


@router.get("/audit-logs")
def audit_logs(
    job_id: Optional[str] = Query(default=None),
    limit: int = Query(default=500, ge=1, le=5000),
    actor: Actor = Depends(get_actor),
):
    logs = logistics_engine.audit_trail(job_id=job_id, limit=limit)
    return {"logs": logs, "count": len(logs)}
