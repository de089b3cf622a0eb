"""Auto-repricing: release Pending Pricing jobs once the catalog covers their lane.

Each trigger (catalog change or job change) performs a full re-scan of every
pending job. There is no incremental diffing; at this data scale a full pass is
cheap and cannot miss a change.
"""
from __future__ import annotations

from typing import Iterable, List, Optional

from app.core.config import get_settings
from app.core.logging import logger
from app.models.audit import Actor
from app.models.jobs import Job, JobStatus
from app.models.pricing import PriceRecord
from app.services import audit
from app.services.job_lifecycle import TransitionResult, promote_priced
from app.services.logistics_state import LogisticsStateStore, logistics_state_store


def plan_promotions(
    catalog: Iterable[PriceRecord],
    jobs: Iterable[Job],
    actor: Optional[Actor] = None,
    tie_break: Optional[str] = None,
) -> List[TransitionResult]:
    """Pure pass: the promotions a re-scan would apply, without persisting them."""
    records = list(catalog)
    actor = actor or audit.system_actor()
    tie_break = tie_break or get_settings().normalized_tie_break()
    results: List[TransitionResult] = []
    for job in jobs:
        if job.status != JobStatus.PENDING_PRICING:
            continue
        result = promote_priced(job, records, actor, tie_break=tie_break)
        if result is not None:
            results.append(result)
    return results


class AutoRepricingReactor:
    """Store-backed driver that applies promotions one job at a time."""

    def __init__(self, store: Optional[LogisticsStateStore] = None) -> None:
        self._store = store or logistics_state_store

    def run(self, trigger: str = "manual") -> List[Job]:
        store = self._store
        actor = audit.system_actor()
        tie_break = get_settings().normalized_tie_break()
        promoted: List[Job] = []

        with store.lock:
            catalog = store.list_catalog()
            pending = store.list_jobs(status=JobStatus.PENDING_PRICING)
            for job in pending:
                # Re-read inside the mutation so a concurrent user write wins cleanly.
                result = store.mutate_job(
                    job.id,
                    lambda current: promote_priced(current, catalog, actor, tie_break=tie_break),
                )
                if result is None:
                    continue
                promoted.append(result.job)
                logger.info(
                    "Job auto-promoted from pending pricing",
                    job_id=result.job.id,
                    cost=result.job.cost,
                    selling_price=result.job.selling_price,
                    trigger=trigger,
                )

        if pending:
            logger.info(
                "Auto-repricing scan finished",
                trigger=trigger,
                scanned=len(pending),
                promoted=len(promoted),
            )
        return promoted
