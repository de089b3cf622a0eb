"""Business orchestration for job requests, dispatch, accounting and pricing."""
from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, List, Optional

from app.core.config import get_settings
from app.core.logging import logger
from app.models.audit import Actor, AuditLog, User, UserRole
from app.models.jobs import (
    AccountingDecisionRequest,
    AssignmentRequest,
    BillingRequest,
    CompletionRequest,
    ExtraChargeRequest,
    Job,
    JobCreateRequest,
    JobStatus,
    PaymentRequest,
    PricingEditRequest,
    ProfitSummary,
    TransitionOptions,
)
from app.models.pricing import PriceQuote, PriceQuoteRequest, PriceRecord
from app.services import job_lifecycle, price_resolver, reports
from app.services.job_lifecycle import TransitionError, TransitionResult
from app.services.logistics_state import LogisticsStateStore, logistics_state_store
from app.services.migrations import run_migrations
from app.services.notifications import ChatNotifier
from app.services.repricing import AutoRepricingReactor


class LogisticsEngine:
    """Runs lifecycle operations against the store and keeps pricing in sync."""

    def __init__(self, store: Optional[LogisticsStateStore] = None) -> None:
        self.settings = get_settings()
        self.store = store or logistics_state_store
        self.reactor = AutoRepricingReactor(self.store)
        self._bootstrapped = False

    def bootstrap(self) -> List[str]:
        """Apply pending data migrations once per process."""
        if self._bootstrapped:
            return []
        applied = run_migrations(self.store)
        self._bootstrapped = True
        return applied

    def lookup_user(self, user_id: str) -> Optional[User]:
        """User directory lookup for request authentication."""
        self.bootstrap()
        return self.store.get_user(user_id)

    def _tie_break(self) -> str:
        return self.settings.normalized_tie_break()

    def _require_job(self, job_id: str) -> Job:
        job = self.store.get_job(job_id)
        if job is None:
            raise KeyError(job_id)
        return job

    def _mutate(
        self,
        job_id: str,
        operation: str,
        actor: Actor,
        mutation: Callable[[Job], TransitionResult],
    ) -> Job:
        result = self.store.mutate_job(job_id, mutation)
        logger.info(
            "Job mutation applied",
            job_id=job_id,
            operation=operation,
            actor=actor.user_id,
            status=result.job.status.value,
            audit_rows=len(result.logs),
        )
        self.reactor.run(trigger=f"job_changed:{operation}")
        return self.store.get_job(job_id) or result.job

    # -- pricing -----------------------------------------------------------

    def list_catalog(self) -> List[PriceRecord]:
        return self.store.list_catalog()

    def replace_catalog(self, records: List[PriceRecord], actor: Actor) -> Dict[str, Any]:
        stored = self.store.replace_catalog(records)
        logger.info("Price catalog replaced", records=len(stored), actor=actor.user_id)
        promoted = self.reactor.run(trigger="catalog_changed")
        return {
            "records": stored,
            "promoted_job_ids": [job.id for job in promoted],
        }

    def quote(self, request: PriceQuoteRequest) -> PriceQuote:
        return price_resolver.quote(
            self.store.list_catalog(),
            request.origin,
            request.destination,
            request.truck_type,
            subcontractor=request.subcontractor,
            drop_count=request.drop_count,
            tie_break=self._tie_break(),
        )

    def pending_pricing_queue(self) -> List[Job]:
        return self.store.list_jobs(status=JobStatus.PENDING_PRICING)

    def reprice_pending(self) -> List[Job]:
        return self.reactor.run(trigger="manual")

    # -- jobs --------------------------------------------------------------

    def create_job(self, request: JobCreateRequest, actor: Actor) -> Job:
        job_id = self.store.generate_job_id()
        result = job_lifecycle.create_job(
            job_id,
            request,
            self.store.list_catalog(),
            actor,
            tie_break=self._tie_break(),
        )
        self.store.save_job(result.job, result.logs)
        logger.info(
            "Job request created",
            job_id=job_id,
            status=result.job.status.value,
            cost=result.job.cost,
            selling_price=result.job.selling_price,
            actor=actor.user_id,
        )
        self.reactor.run(trigger="job_changed:create")
        return self.store.get_job(job_id) or result.job

    def get_job(self, job_id: str) -> Job:
        return self._require_job(job_id)

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[Job]:
        return self.store.list_jobs(status=status)

    def transition_options(self, job_id: str, actor: Actor) -> TransitionOptions:
        job = self._require_job(job_id)
        return TransitionOptions(
            job_id=job.id,
            status=job.status,
            accounting_status=job.accounting_status,
            allowed=job_lifecycle.allowed_targets(job, actor),
        )

    def assign_job(self, job_id: str, request: AssignmentRequest, actor: Actor) -> Job:
        catalog = self.store.list_catalog()
        return self._mutate(job_id, "assign", actor, lambda job: job_lifecycle.assign(job, request, catalog, actor))

    def complete_drop(self, job_id: str, index: int, actor: Actor, pod_url: Optional[str] = None) -> Job:
        return self._mutate(
            job_id,
            "complete_drop",
            actor,
            lambda job: job_lifecycle.complete_drop(job, index, actor, pod_url=pod_url),
        )

    def complete_job(self, job_id: str, request: CompletionRequest, actor: Actor) -> Job:
        return self._mutate(job_id, "complete", actor, lambda job: job_lifecycle.complete(job, request, actor))

    def add_extra_charge(self, job_id: str, request: ExtraChargeRequest, actor: Actor) -> Job:
        charge_id = f"EXC-{uuid.uuid4().hex[:12]}"
        return self._mutate(
            job_id,
            "extra_charge",
            actor,
            lambda job: job_lifecycle.add_extra_charge(job, request, charge_id, actor),
        )

    def edit_pricing(self, job_id: str, request: PricingEditRequest, actor: Actor) -> Job:
        return self._mutate(job_id, "edit_pricing", actor, lambda job: job_lifecycle.edit_pricing(job, request, actor))

    def cancel_job(self, job_id: str, reason: str, actor: Actor) -> Job:
        def _cancel(job: Job) -> TransitionResult:
            if actor.role == UserRole.BOOKING_OFFICER and job.requested_by != actor.user_id:
                raise PermissionError("Booking officers can only cancel their own job requests")
            return job_lifecycle.cancel(job, reason, actor)

        return self._mutate(job_id, "cancel", actor, _cancel)

    def delete_job(self, job_id: str, actor: Actor) -> AuditLog:
        if actor.role != UserRole.ADMIN:
            raise PermissionError("Only admins can hard-delete jobs")
        with self.store.lock:
            job = self._require_job(job_id)
            log = job_lifecycle.deletion_log(job, actor)
            self.store.delete_job(job_id, log)
        logger.warning("Job hard-deleted", job_id=job_id, actor=actor.user_id)
        return log

    # -- accounting --------------------------------------------------------

    def decide_accounting(self, job_id: str, request: AccountingDecisionRequest, actor: Actor) -> Job:
        return self._mutate(
            job_id,
            f"accounting_{request.action.value}",
            actor,
            lambda job: job_lifecycle.decide_accounting(job, request, actor),
        )

    def bill_jobs(self, request: BillingRequest, actor: Actor) -> List[Job]:
        """Bill a batch for one subcontractor. Every job is validated before any is written."""
        with self.store.lock:
            jobs = [self._require_job(job_id) for job_id in dict.fromkeys(request.job_ids)]
            subcontractors = {job.subcontractor or "" for job in jobs}
            if len(subcontractors) > 1:
                raise TransitionError("All jobs on one billing document must share a subcontractor")
            for job in jobs:
                blocker = job_lifecycle.transition_blocker(job, JobStatus.BILLED, actor)
                if blocker:
                    raise TransitionError(blocker)

            billed = []
            for job in jobs:
                billed.append(
                    self._mutate(
                        job.id,
                        "bill",
                        actor,
                        lambda current: job_lifecycle.bill(current, request.billing_doc_no, request.billing_date, actor),
                    )
                )
        return billed

    def record_payment(self, request: PaymentRequest, actor: Actor) -> List[Job]:
        with self.store.lock:
            jobs = [self._require_job(job_id) for job_id in dict.fromkeys(request.job_ids)]
            for job in jobs:
                # Dry run: raises before any job in the batch is written.
                job_lifecycle.record_payment(job, request.payment_date, actor, request.payment_slip_url)
            return [
                self._mutate(
                    job.id,
                    "payment",
                    actor,
                    lambda current: job_lifecycle.record_payment(
                        current, request.payment_date, actor, request.payment_slip_url
                    ),
                )
                for job in jobs
            ]

    def audit_trail(self, job_id: Optional[str] = None, limit: int = 500) -> List[AuditLog]:
        return self.store.list_logs(job_id=job_id, limit=limit)

    # -- reporting ---------------------------------------------------------

    def profit_summary(self, group_by: str = reports.GROUP_BY_SUBCONTRACTOR) -> ProfitSummary:
        return reports.profit_summary(self.store.list_jobs(), group_by=group_by)

    def send_daily_summary(self, notifier: Optional[ChatNotifier] = None) -> Dict[str, Any]:
        notifier = notifier or ChatNotifier()
        return notifier.send_daily_summary(self.store.list_jobs())


logistics_engine = LogisticsEngine()
