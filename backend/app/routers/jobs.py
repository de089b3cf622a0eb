"""API routes for job requests, dispatch and field completion."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.auth import get_actor, require_roles
from app.core.logging import logger
from app.models.audit import Actor, UserRole
from app.models.jobs import (
    AssignmentRequest,
    CancelRequest,
    CompletionRequest,
    DropCompletionRequest,
    ExtraChargeRequest,
    JobCreateRequest,
    JobStatus,
    PricingEditRequest,
    TransitionOptions,
)
from app.services.logistics_engine import logistics_engine

router = APIRouter(prefix="/jobs", tags=["jobs"])

DISPATCH_ROLES = (UserRole.DISPATCHER, UserRole.ADMIN)


@router.get("")
def list_jobs(
    status: Optional[JobStatus] = Query(default=None),
    actor: Actor = Depends(get_actor),
):
    jobs = logistics_engine.list_jobs(status=status)
    return {"jobs": jobs, "count": len(jobs)}


@router.post("")
def create_job(
    request: JobCreateRequest,
    actor: Actor = Depends(require_roles(UserRole.BOOKING_OFFICER, UserRole.ADMIN)),
):
    try:
        return logistics_engine.create_job(request, actor)
    except ValueError as exc:
        logger.warning("Failed to create job", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/{job_id}")
def get_job(job_id: str, actor: Actor = Depends(get_actor)):
    try:
        return logistics_engine.get_job(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")


@router.get("/{job_id}/transitions", response_model=TransitionOptions)
def get_transition_options(job_id: str, actor: Actor = Depends(get_actor)):
    try:
        return logistics_engine.transition_options(job_id, actor)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")


@router.post("/{job_id}/assign")
def assign_job(
    job_id: str,
    request: AssignmentRequest,
    actor: Actor = Depends(require_roles(*DISPATCH_ROLES)),
):
    try:
        return logistics_engine.assign_job(job_id, request, actor)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except ValueError as exc:
        logger.warning("Failed to assign job", job_id=job_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/{job_id}/drops/{index}/complete")
def complete_drop(
    job_id: str,
    index: int,
    request: DropCompletionRequest,
    actor: Actor = Depends(require_roles(*DISPATCH_ROLES)),
):
    try:
        return logistics_engine.complete_drop(job_id, index, actor, pod_url=request.pod_url)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except ValueError as exc:
        logger.warning("Failed to complete drop", job_id=job_id, index=index, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/{job_id}/complete")
def complete_job(
    job_id: str,
    request: CompletionRequest,
    actor: Actor = Depends(require_roles(*DISPATCH_ROLES)),
):
    try:
        return logistics_engine.complete_job(job_id, request, actor)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except ValueError as exc:
        logger.warning("Failed to complete job", job_id=job_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/{job_id}/extra-charges")
def add_extra_charge(
    job_id: str,
    request: ExtraChargeRequest,
    actor: Actor = Depends(require_roles(UserRole.DISPATCHER, UserRole.ACCOUNTANT, UserRole.ADMIN)),
):
    try:
        return logistics_engine.add_extra_charge(job_id, request, actor)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except ValueError as exc:
        logger.warning("Failed to add extra charge", job_id=job_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.patch("/{job_id}/pricing")
def edit_pricing(
    job_id: str,
    request: PricingEditRequest,
    actor: Actor = Depends(require_roles(UserRole.ACCOUNTANT, UserRole.ADMIN)),
):
    try:
        return logistics_engine.edit_pricing(job_id, request, actor)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except ValueError as exc:
        logger.warning("Failed to edit pricing", job_id=job_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/{job_id}/cancel")
def cancel_job(
    job_id: str,
    request: CancelRequest,
    actor: Actor = Depends(get_actor),
):
    try:
        return logistics_engine.cancel_job(job_id, request.reason, actor)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    except ValueError as exc:
        logger.warning("Failed to cancel job", job_id=job_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.delete("/{job_id}")
def delete_job(
    job_id: str,
    actor: Actor = Depends(require_roles(UserRole.ADMIN)),
):
    try:
        log = logistics_engine.delete_job(job_id, actor)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    return {"deleted": job_id, "audit_log": log}
