"""Job lifecycle state machine.

Every operation here is pure: it takes a job (and whatever catalog or request
data it needs), validates the move, and returns a *new* job together with the
audit entries describing the change. Nothing is persisted and the input job is
never mutated, so a failed validation leaves no partial state behind.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from app.models.audit import Actor, AuditLog
from app.models.jobs import (
    AccountingAction,
    AccountingDecisionRequest,
    AccountingStatus,
    AssignmentRequest,
    CompletionRequest,
    DropDetail,
    DropStatus,
    ExtraChargeDetail,
    ExtraChargeRequest,
    Job,
    JobCreateRequest,
    JobStatus,
    PricingEditRequest,
)
from app.models.pricing import PriceRecord
from app.services import audit
from app.services.price_resolver import (
    TIE_BREAK_CHEAPEST,
    resolve_for_subcontractor,
    resolve_price,
    total_cost,
    total_revenue,
)


class TransitionError(ValueError):
    """Raised when a requested lifecycle change is not permitted."""


@dataclass
class TransitionResult:
    job: Job
    logs: List[AuditLog] = field(default_factory=list)


ALLOWED_STATUS_TRANSITIONS = {
    JobStatus.PENDING_PRICING: {JobStatus.NEW_REQUEST, JobStatus.CANCELLED},
    JobStatus.NEW_REQUEST: {JobStatus.ASSIGNED, JobStatus.CANCELLED},
    JobStatus.ASSIGNED: {JobStatus.COMPLETED},
    JobStatus.COMPLETED: {JobStatus.BILLED, JobStatus.ASSIGNED},
    JobStatus.BILLED: set(),
    JobStatus.CANCELLED: set(),
}

ALLOWED_ACCOUNTING_TRANSITIONS = {
    None: {AccountingStatus.PENDING_REVIEW, AccountingStatus.APPROVED, AccountingStatus.REJECTED},
    AccountingStatus.PENDING_REVIEW: {AccountingStatus.APPROVED, AccountingStatus.REJECTED},
    AccountingStatus.REJECTED: {AccountingStatus.PENDING_REVIEW},
    AccountingStatus.APPROVED: {AccountingStatus.LOCKED, AccountingStatus.PAID},
    AccountingStatus.LOCKED: set(),
    AccountingStatus.PAID: set(),
}

REVIEWABLE = {None, AccountingStatus.PENDING_REVIEW}

# Statuses whose transition always needs a human-entered reason.
REASON_REQUIRED = {JobStatus.CANCELLED}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _clean(value: Optional[str]) -> str:
    return str(value or "").strip()


def _display(value: object) -> object:
    if value is None or (isinstance(value, str) and not value.strip()):
        return "None"
    return value


def transition_blocker(job: Job, target: JobStatus, actor: Optional[Actor] = None) -> Optional[str]:
    """Explain why ``job`` cannot move to ``target``, or ``None`` if it can."""
    try:
        target = JobStatus(target)
    except ValueError:
        return f"Unknown status '{target}'"

    current = job.status
    if current == target:
        return f"Job {job.id} is already {current.value}"

    allowed = ALLOWED_STATUS_TRANSITIONS.get(current, set())
    if target not in allowed:
        return (
            f"Invalid status transition {current.value} -> {target.value}. "
            f"Allowed: {sorted(status.value for status in allowed)}"
        )

    if current == JobStatus.PENDING_PRICING and target == JobStatus.NEW_REQUEST:
        if actor is None or not actor.is_system:
            return "Pending Pricing jobs are released only by auto-pricing once a catalog price exists"
    if target == JobStatus.CANCELLED and job.has_assignment:
        return f"Job {job.id} already has a subcontractor or driver assigned"
    if current == JobStatus.COMPLETED and target == JobStatus.ASSIGNED:
        if job.accounting_status not in REVIEWABLE:
            return "Only an accounting rejection of a job under review can reopen it"
    if current == JobStatus.COMPLETED and target == JobStatus.BILLED:
        if job.accounting_status != AccountingStatus.APPROVED:
            return f"Job {job.id} must be approved by accounting before billing"
    return None


def can_transition(job: Job, target: JobStatus, actor: Optional[Actor] = None) -> bool:
    """Predicate callers consult before attempting a status change."""
    return transition_blocker(job, target, actor) is None


def allowed_targets(job: Job, actor: Optional[Actor] = None) -> List[JobStatus]:
    return [status for status in JobStatus if can_transition(job, status, actor)]


def can_transition_accounting(job: Job, target: AccountingStatus) -> bool:
    if target not in ALLOWED_ACCOUNTING_TRANSITIONS.get(job.accounting_status, set()):
        return False
    if target == AccountingStatus.PAID:
        return job.status == JobStatus.BILLED
    return job.status in {JobStatus.COMPLETED, JobStatus.ASSIGNED}


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise TransitionError(message)


def _require_reason(reason: Optional[str], action: str) -> str:
    text = _clean(reason)
    _require(bool(text), f"A reason is required to {action}")
    return text


def _check_transition(job: Job, target: JobStatus, actor: Optional[Actor]) -> None:
    blocker = transition_blocker(job, target, actor)
    if blocker:
        raise TransitionError(blocker)


def _guard_cost(job: Job, new_cost: float) -> None:
    if job.is_base_cost_locked and float(new_cost) != float(job.cost):
        raise TransitionError(f"Base cost of {job.id} is locked after accounting approval")


def _copy(job: Job) -> Job:
    updated = job.model_copy(deep=True)
    updated.updated_at = _now()
    return updated


def apply_transition(
    job: Job,
    target: JobStatus,
    actor: Actor,
    reason: Optional[str] = None,
) -> TransitionResult:
    """Move ``job`` to ``target`` and record the status change."""
    if target in REASON_REQUIRED or (job.status == JobStatus.COMPLETED and target == JobStatus.ASSIGNED):
        reason = _require_reason(reason, f"move {job.id} to {JobStatus(target).value}")
    _check_transition(job, target, actor)

    updated = _copy(job)
    updated.status = JobStatus(target)
    log = audit.emit(job.id, actor, "Status", job.status, updated.status, reason or f"Moved to {updated.status.value}")
    return TransitionResult(job=updated, logs=[log])


def _chain(first: TransitionResult, second: TransitionResult) -> TransitionResult:
    return TransitionResult(job=second.job, logs=[*first.logs, *second.logs])


def create_job(
    job_id: str,
    request: JobCreateRequest,
    catalog: Iterable[PriceRecord],
    actor: Actor,
    tie_break: str = TIE_BREAK_CHEAPEST,
) -> TransitionResult:
    """Build a new job, priced from the catalog when the lane has a price."""
    drops = [DropDetail(location=_clean(location)) for location in request.drops if _clean(location)]
    job = Job(
        id=job_id,
        date_of_service=request.date_of_service,
        origin=_clean(request.origin),
        destination=_clean(request.destination),
        truck_type=_clean(request.truck_type),
        product_detail=request.product_detail,
        weight_volume=request.weight_volume,
        remark=request.remark,
        reference_no=request.reference_no,
        requested_by=actor.user_id,
        requested_by_name=actor.user_name,
        drops=drops,
    )

    record = resolve_price(catalog, job.origin, job.destination, job.truck_type, tie_break=tie_break)
    if record is None:
        job.status = JobStatus.PENDING_PRICING
        job.cost = 0.0
        job.selling_price = 0.0
    else:
        job.status = JobStatus.NEW_REQUEST
        job.cost = total_cost(record, len(drops))
        job.selling_price = total_revenue(record, len(drops))

    logs = [audit.emit(job.id, actor, "Status", None, job.status, "Job request submitted")]
    if record is not None:
        logs.append(audit.emit(job.id, actor, "Cost (Price)", 0, job.cost, "Initial pricing from price catalog"))
        logs.append(audit.emit(job.id, actor, "Selling Price", 0, job.selling_price, "Initial pricing from price catalog"))
    return TransitionResult(job=job, logs=logs)


def promote_priced(
    job: Job,
    catalog: Iterable[PriceRecord],
    actor: Actor,
    tie_break: str = TIE_BREAK_CHEAPEST,
) -> Optional[TransitionResult]:
    """Release a Pending Pricing job once its lane has a catalog price.

    Returns ``None`` when the job is not pending or still has no price, so
    repeated runs over unchanged inputs are no-ops.
    """
    if job.status != JobStatus.PENDING_PRICING:
        return None
    record = resolve_price(catalog, job.origin, job.destination, job.truck_type, tie_break=tie_break)
    if record is None:
        return None
    _check_transition(job, JobStatus.NEW_REQUEST, actor)

    updated = _copy(job)
    updated.status = JobStatus.NEW_REQUEST
    updated.cost = total_cost(record, len(job.drops))
    updated.selling_price = total_revenue(record, len(job.drops))
    log = audit.emit(
        job.id,
        actor,
        "Status / Pricing",
        f"{job.status.value} (cost {job.cost:g}, selling {job.selling_price:g})",
        f"{updated.status.value} (cost {updated.cost:g}, selling {updated.selling_price:g})",
        audit.AUTO_PRICING_REASON,
    )
    return TransitionResult(job=updated, logs=[log])


def assign(
    job: Job,
    request: AssignmentRequest,
    catalog: Iterable[PriceRecord],
    actor: Actor,
) -> TransitionResult:
    """Attach carrier resources to a job, or change them on an assigned job."""
    if job.status == JobStatus.NEW_REQUEST:
        return _first_assignment(job, request, list(catalog), actor)
    if job.status == JobStatus.ASSIGNED:
        return _reassignment(job, request, list(catalog), actor)
    if job.status == JobStatus.PENDING_PRICING:
        raise TransitionError(f"Job {job.id} is waiting for a catalog price and cannot be assigned yet")
    raise TransitionError(f"Job {job.id} cannot be assigned while {job.status.value}")


def _catalog_totals(job: Job, catalog: List[PriceRecord], subcontractor: str) -> tuple[float, float, bool]:
    record = resolve_for_subcontractor(catalog, job.origin, job.destination, job.truck_type, subcontractor)
    if record is None:
        return job.cost, job.selling_price, False
    drop_count = len(job.drops)
    return total_cost(record, drop_count), total_revenue(record, drop_count), True


def _first_assignment(job: Job, request: AssignmentRequest, catalog: List[PriceRecord], actor: Actor) -> TransitionResult:
    _check_transition(job, JobStatus.ASSIGNED, actor)
    subcontractor = _clean(request.subcontractor)
    catalog_cost, catalog_selling, _ = _catalog_totals(job, catalog, subcontractor)
    final_cost = float(request.cost) if request.cost is not None else catalog_cost
    overridden = final_cost != catalog_cost
    reason = _clean(request.reason)
    if overridden:
        reason = _require_reason(reason, f"override the catalog cost of {job.id}")
    _guard_cost(job, final_cost)

    updated = _copy(job)
    updated.subcontractor = subcontractor
    updated.driver_name = request.driver_name
    updated.driver_phone = request.driver_phone
    updated.license_plate = request.license_plate
    updated.cost = final_cost
    updated.selling_price = catalog_selling

    logs = [
        audit.emit(job.id, actor, "Assignment", "Unassigned", f"{subcontractor} ({job.truck_type})", "New Job Assignment"),
    ]
    if updated.cost != job.cost:
        logs.append(audit.emit(job.id, actor, "Cost (Price)", job.cost, updated.cost, reason or "Subcontractor catalog price"))
    if overridden:
        logs.append(audit.emit(job.id, actor, "Price Override", catalog_cost, final_cost, reason))
    if updated.selling_price != job.selling_price:
        logs.append(
            audit.emit(job.id, actor, "Selling Price", job.selling_price, updated.selling_price, "Subcontractor catalog price")
        )
    moved = apply_transition(updated, JobStatus.ASSIGNED, actor, "New Job Assignment")
    return _chain(TransitionResult(job=updated, logs=logs), moved)


def _reassignment(job: Job, request: AssignmentRequest, catalog: List[PriceRecord], actor: Actor) -> TransitionResult:
    subcontractor = _clean(request.subcontractor)
    new_cost = job.cost
    new_selling = job.selling_price
    if subcontractor != _clean(job.subcontractor):
        new_cost, new_selling, _ = _catalog_totals(job, catalog, subcontractor)
    # A supplied cost overrides cost only; selling price follows the carrier's catalog record.
    if request.cost is not None:
        new_cost = float(request.cost)

    changes = [
        ("Subcontractor", job.subcontractor, subcontractor),
        ("Driver", job.driver_name, request.driver_name),
        ("Driver Phone", job.driver_phone, request.driver_phone),
        ("License Plate", job.license_plate, request.license_plate),
        ("Cost (Price)", job.cost, new_cost),
        ("Selling Price", job.selling_price, new_selling),
    ]
    changes = [(name, old, new) for name, old, new in changes if _display(old) != _display(new)]
    _require(bool(changes), f"No assignment changes for {job.id}")
    reason = _require_reason(request.reason, f"change the assignment of {job.id}")
    _guard_cost(job, new_cost)

    updated = _copy(job)
    updated.subcontractor = subcontractor
    updated.driver_name = request.driver_name
    updated.driver_phone = request.driver_phone
    updated.license_plate = request.license_plate
    updated.cost = new_cost
    updated.selling_price = new_selling
    logs = [audit.emit(job.id, actor, name, _display(old), _display(new), reason) for name, old, new in changes]
    return TransitionResult(job=updated, logs=logs)


def complete_drop(job: Job, index: int, actor: Actor, pod_url: Optional[str] = None) -> TransitionResult:
    _require(job.status == JobStatus.ASSIGNED, f"Drops on {job.id} can only be completed while Assigned")
    _require(0 <= index < len(job.drops), f"Job {job.id} has no drop #{index + 1}")
    drop = job.drops[index]
    _require(drop.status != DropStatus.COMPLETED, f"Drop #{index + 1} of {job.id} is already completed")

    updated = _copy(job)
    updated.drops[index].status = DropStatus.COMPLETED
    updated.drops[index].pod_url = pod_url or drop.pod_url
    updated.drops[index].completed_at = _now()
    log = audit.emit(
        job.id,
        actor,
        f"Drop {index + 1} ({drop.location})",
        DropStatus.PENDING,
        DropStatus.COMPLETED,
        "Drop delivered",
    )
    return TransitionResult(job=updated, logs=[log])


def complete(job: Job, request: CompletionRequest, actor: Actor) -> TransitionResult:
    """Record proof of delivery and hand the job to accounting review."""
    _check_transition(job, JobStatus.COMPLETED, actor)
    pod_urls = [url for url in request.pod_image_urls if _clean(url)] or list(job.pod_image_urls)
    _require(bool(pod_urls), f"Proof of delivery is required to complete {job.id}")
    pending = [drop.location for drop in job.drops if drop.status != DropStatus.COMPLETED]
    _require(not pending, f"Job {job.id} still has pending drops: {', '.join(pending)}")

    updated = _copy(job)
    updated.pod_image_urls = pod_urls
    updated.actual_arrival_time = request.actual_arrival_time or job.actual_arrival_time
    updated.mileage = request.mileage or job.mileage
    updated.accounting_status = AccountingStatus.PENDING_REVIEW

    logs = []
    if job.accounting_status != AccountingStatus.PENDING_REVIEW:
        logs.append(
            audit.emit(
                job.id,
                actor,
                "Accounting Status",
                job.accounting_status,
                AccountingStatus.PENDING_REVIEW,
                "Proof of delivery submitted",
            )
        )
    moved = apply_transition(updated, JobStatus.COMPLETED, actor, "Proof of delivery submitted")
    return _chain(TransitionResult(job=updated, logs=logs), moved)


def add_extra_charge(job: Job, request: ExtraChargeRequest, charge_id: str, actor: Actor) -> TransitionResult:
    _require(
        job.status in {JobStatus.NEW_REQUEST, JobStatus.ASSIGNED, JobStatus.COMPLETED},
        f"Extra charges cannot be added to {job.id} while {job.status.value}",
    )
    _require(
        job.accounting_status not in {AccountingStatus.LOCKED, AccountingStatus.PAID},
        f"Job {job.id} is closed by accounting",
    )
    reason = _require_reason(request.reason, f"add an extra charge to {job.id}")

    updated = _copy(job)
    updated.extra_charges.append(
        ExtraChargeDetail(
            id=charge_id,
            type=request.type,
            amount=request.amount,
            reason=reason,
            attachment_url=request.attachment_url,
            status=request.status,
        )
    )
    updated.extra_charge = sum(charge.amount for charge in updated.extra_charges)
    log = audit.emit(job.id, actor, f"Extra Charge ({request.type})", job.extra_charge, updated.extra_charge, reason)
    return TransitionResult(job=updated, logs=[log])


def edit_pricing(job: Job, request: PricingEditRequest, actor: Actor) -> TransitionResult:
    """Manual cost / selling price correction."""
    reason = _require_reason(request.reason, f"edit pricing on {job.id}")
    _require(
        job.status != JobStatus.PENDING_PRICING,
        f"Job {job.id} is waiting for a catalog price; add the lane to the price catalog instead",
    )
    _require(
        job.status in {JobStatus.NEW_REQUEST, JobStatus.ASSIGNED, JobStatus.COMPLETED},
        f"Pricing of {job.id} cannot change while {job.status.value}",
    )
    new_cost = job.cost if request.cost is None else float(request.cost)
    new_selling = job.selling_price if request.selling_price is None else float(request.selling_price)
    _require(new_cost != job.cost or new_selling != job.selling_price, f"No pricing changes for {job.id}")
    _guard_cost(job, new_cost)

    updated = _copy(job)
    updated.cost = new_cost
    updated.selling_price = new_selling
    logs = []
    if new_cost != job.cost:
        logs.append(audit.emit(job.id, actor, "Cost (Price)", job.cost, new_cost, reason))
    if new_selling != job.selling_price:
        logs.append(audit.emit(job.id, actor, "Selling Price", job.selling_price, new_selling, reason))
    return TransitionResult(job=updated, logs=logs)


def decide_accounting(job: Job, request: AccountingDecisionRequest, actor: Actor) -> TransitionResult:
    """Approve, reject or finally lock a completed job."""
    if request.action == AccountingAction.REJECT:
        reason = _require_reason(request.reason, f"reject {job.id}")
        return _reject(job, reason, actor)

    _require(job.status == JobStatus.COMPLETED, f"Job {job.id} is not awaiting accounting review")
    if request.action == AccountingAction.APPROVE:
        _require(job.accounting_status in REVIEWABLE, f"Job {job.id} is not pending review")
        _require(bool(job.pod_image_urls), f"Cannot approve {job.id} without proof of delivery")
        target = AccountingStatus.APPROVED
        reason = _clean(request.reason) or "Accounting Verification Approved"
    else:
        _require(job.accounting_status == AccountingStatus.APPROVED, f"Only approved jobs can be locked ({job.id})")
        target = AccountingStatus.LOCKED
        reason = _clean(request.reason) or "Final lock"

    updated = _copy(job)
    updated.accounting_status = target
    updated.is_base_cost_locked = True
    if _clean(request.reason):
        updated.accounting_remark = reason
    logs = [audit.emit(job.id, actor, "Accounting Status", job.accounting_status or "Pending", target, reason)]
    if not job.is_base_cost_locked:
        logs.append(audit.emit(job.id, actor, "Base Cost Lock", False, True, reason))
    return TransitionResult(job=updated, logs=logs)


def _reject(job: Job, reason: str, actor: Actor) -> TransitionResult:
    _require(job.status == JobStatus.COMPLETED, f"Job {job.id} is not awaiting accounting review")
    _require(job.accounting_status in REVIEWABLE, f"Job {job.id} is not pending review")

    moved = apply_transition(job, JobStatus.ASSIGNED, actor, reason)
    updated = moved.job
    updated.accounting_status = AccountingStatus.REJECTED
    updated.accounting_remark = reason
    log = audit.emit(job.id, actor, "Accounting Status", job.accounting_status or "Pending", AccountingStatus.REJECTED, reason)
    return TransitionResult(job=updated, logs=[log, *moved.logs])


def bill(job: Job, billing_doc_no: str, billing_date: str, actor: Actor) -> TransitionResult:
    doc_no = _clean(billing_doc_no)
    _require(bool(doc_no), "A billing document number is required")
    _check_transition(job, JobStatus.BILLED, actor)

    updated = _copy(job)
    updated.billing_doc_no = doc_no
    updated.billing_date = billing_date
    logs = [audit.emit(job.id, actor, "Billing Doc No", job.billing_doc_no, doc_no, f"Billed on {billing_date}")]
    moved = apply_transition(updated, JobStatus.BILLED, actor, f"Billed under {doc_no}")
    return _chain(TransitionResult(job=updated, logs=logs), moved)


def record_payment(job: Job, payment_date: str, actor: Actor, payment_slip_url: Optional[str] = None) -> TransitionResult:
    _require(
        can_transition_accounting(job, AccountingStatus.PAID),
        f"Job {job.id} must be billed and approved before payment",
    )
    updated = _copy(job)
    updated.accounting_status = AccountingStatus.PAID
    updated.payment_date = payment_date
    updated.payment_slip_url = payment_slip_url or job.payment_slip_url
    updated.is_base_cost_locked = True
    log = audit.emit(
        job.id,
        actor,
        "Payment",
        job.accounting_status or "Unpaid",
        AccountingStatus.PAID,
        f"Payment Recorded: {payment_date}",
    )
    return TransitionResult(job=updated, logs=[log])


def cancel(job: Job, reason: Optional[str], actor: Actor) -> TransitionResult:
    text = _require_reason(reason, f"cancel {job.id}")
    return apply_transition(job, JobStatus.CANCELLED, actor, text)


def deletion_log(job: Job, actor: Actor) -> AuditLog:
    return audit.emit(job.id, actor, "SYSTEM", "Active", "Deleted", audit.HARD_DELETE_REASON)
