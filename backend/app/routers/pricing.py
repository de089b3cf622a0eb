"""API routes for the lane price catalog and pending pricing queue."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from app.core.auth import get_actor, require_roles
from app.core.logging import logger
from app.models.audit import Actor, UserRole
from app.models.pricing import PriceCatalogReplaceRequest, PriceQuoteRequest
from app.services.logistics_engine import logistics_engine

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get("/catalog")
def list_catalog(actor: Actor = Depends(get_actor)):
    records = logistics_engine.list_catalog()
    return {"records": records, "count": len(records)}


@router.put("/catalog")
def replace_catalog(
    request: PriceCatalogReplaceRequest,
    actor: Actor = Depends(require_roles(UserRole.ADMIN, UserRole.ACCOUNTANT)),
):
    try:
        return logistics_engine.replace_catalog(request.records, actor)
    except ValueError as exc:
        logger.warning("Failed to replace price catalog", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/quote")
def quote_lane(request: PriceQuoteRequest, actor: Actor = Depends(get_actor)):
    return logistics_engine.quote(request)


@router.get("/pending")
def pending_pricing_queue(actor: Actor = Depends(get_actor)):
    jobs = logistics_engine.pending_pricing_queue()
    return {
        "count": len(jobs),
        "jobs": [
            {
                "id": job.id,
                "origin": job.origin,
                "destination": job.destination,
                "truck_type": job.truck_type,
                "date_of_service": job.date_of_service,
                "requested_by": job.requested_by,
            }
            for job in jobs
        ],
    }


@router.post("/reprice")
def reprice_pending(actor: Actor = Depends(require_roles(UserRole.ADMIN, UserRole.ACCOUNTANT))):
    promoted = logistics_engine.reprice_pending()
    return {"promoted_job_ids": [job.id for job in promoted]}
