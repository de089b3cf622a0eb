"""Domain models for job requests, dispatch assignment, and accounting review."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Operational lifecycle status for a job."""

    NEW_REQUEST = "New Request"
    PENDING_PRICING = "Pending Pricing"
    ASSIGNED = "Assigned"
    COMPLETED = "Completed"
    BILLED = "Billed"
    CANCELLED = "Cancelled"


class AccountingStatus(str, Enum):
    """Accounting review axis, meaningful once a job is completed."""

    PENDING_REVIEW = "Pending Review"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    LOCKED = "Locked"
    PAID = "Paid"


class AccountingAction(str, Enum):
    """Decisions an accountant can take on a completed job."""

    APPROVE = "approve"
    REJECT = "reject"
    LOCK = "lock"


class DropStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class ChargeStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class DropDetail(BaseModel):
    """Intermediate delivery stop billed with the lane's flat drop fee."""

    location: str
    status: DropStatus = DropStatus.PENDING
    pod_url: Optional[str] = None
    completed_at: Optional[datetime] = None


class ExtraChargeDetail(BaseModel):
    """Line item on top of the base cost. Negative amounts are credits."""

    id: str
    type: str
    amount: float
    reason: str
    attachment_url: Optional[str] = None
    status: ChargeStatus = ChargeStatus.PENDING


class Job(BaseModel):
    """Persisted job record."""

    id: str
    date_of_service: Optional[str] = None
    origin: str
    destination: str
    truck_type: str
    product_detail: Optional[str] = None
    weight_volume: Optional[str] = None
    remark: Optional[str] = None
    reference_no: Optional[str] = None
    requested_by: Optional[str] = None
    requested_by_name: Optional[str] = None
    status: JobStatus = JobStatus.NEW_REQUEST

    subcontractor: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    license_plate: Optional[str] = None
    cost: float = 0.0
    selling_price: float = 0.0

    drops: List[DropDetail] = Field(default_factory=list)
    actual_arrival_time: Optional[str] = None
    mileage: Optional[str] = None
    pod_image_urls: List[str] = Field(default_factory=list)
    extra_charge: float = 0.0
    extra_charges: List[ExtraChargeDetail] = Field(default_factory=list)

    accounting_status: Optional[AccountingStatus] = None
    accounting_remark: Optional[str] = None
    is_base_cost_locked: bool = False
    billing_doc_no: Optional[str] = None
    billing_date: Optional[str] = None
    payment_date: Optional[str] = None
    payment_slip_url: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def has_assignment(self) -> bool:
        return bool((self.subcontractor or "").strip() or (self.driver_name or "").strip())


class JobCreateRequest(BaseModel):
    """Booking officer submission."""

    date_of_service: Optional[str] = None
    origin: str = Field(min_length=1)
    destination: str = Field(min_length=1)
    truck_type: str = Field(min_length=1)
    product_detail: Optional[str] = None
    weight_volume: Optional[str] = None
    remark: Optional[str] = None
    reference_no: Optional[str] = None
    drops: List[str] = Field(default_factory=list)


class AssignmentRequest(BaseModel):
    """Dispatcher assignment or reassignment of carrier resources."""

    subcontractor: str = Field(min_length=1)
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    license_plate: Optional[str] = None
    cost: Optional[float] = Field(default=None, ge=0)
    reason: Optional[str] = None


class DropCompletionRequest(BaseModel):
    pod_url: Optional[str] = None


class CompletionRequest(BaseModel):
    """Proof-of-delivery submission closing out field work."""

    actual_arrival_time: Optional[str] = None
    mileage: Optional[str] = None
    pod_image_urls: List[str] = Field(default_factory=list)


class ExtraChargeRequest(BaseModel):
    type: str = Field(min_length=1)
    amount: float
    reason: str = Field(min_length=1)
    attachment_url: Optional[str] = None
    status: ChargeStatus = ChargeStatus.PENDING


class PricingEditRequest(BaseModel):
    """Manual cost/selling price edit. Always needs a reason."""

    cost: Optional[float] = Field(default=None, ge=0)
    selling_price: Optional[float] = Field(default=None, ge=0)
    reason: str = ""


class AccountingDecisionRequest(BaseModel):
    action: AccountingAction
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: str = ""


class BillingRequest(BaseModel):
    job_ids: List[str] = Field(min_length=1)
    billing_doc_no: str = Field(min_length=1)
    billing_date: str = Field(min_length=1)


class PaymentRequest(BaseModel):
    job_ids: List[str] = Field(min_length=1)
    payment_date: str = Field(min_length=1)
    payment_slip_url: Optional[str] = None


class TransitionOptions(BaseModel):
    """Statuses a job may legally move to from where it is now."""

    job_id: str
    status: JobStatus
    accounting_status: Optional[AccountingStatus] = None
    allowed: List[JobStatus] = Field(default_factory=list)


class ProfitGroup(BaseModel):
    label: str
    jobs: int = 0
    revenue: float = 0.0
    cost: float = 0.0
    profit: float = 0.0
    margin_percent: float = 0.0


class ProfitSummary(BaseModel):
    """Revenue/cost/profit rollup over non-cancelled jobs."""

    group_by: str
    job_count: int
    total_revenue: float
    total_cost: float
    gross_profit: float
    margin_percent: float
    completion_rate: float
    groups: List[ProfitGroup] = Field(default_factory=list)
