"""Cost, revenue and profit rollups."""
from __future__ import annotations

from typing import Dict, Iterable

from app.models.jobs import Job, JobStatus, ProfitGroup, ProfitSummary

GROUP_BY_SUBCONTRACTOR = "subcontractor"
GROUP_BY_LANE = "lane"


def job_revenue(job: Job) -> float:
    """Selling price plus extra charges (credits reduce it)."""
    return float(job.selling_price or 0.0) + float(job.extra_charge or 0.0)


def job_profit(job: Job) -> float:
    return job_revenue(job) - float(job.cost or 0.0)


def _margin(profit: float, revenue: float) -> float:
    return round(profit / revenue * 100, 2) if revenue > 0 else 0.0


def _group_key(job: Job, group_by: str) -> str:
    if group_by == GROUP_BY_LANE:
        return f"{job.origin} -> {job.destination} ({job.truck_type})"
    return job.subcontractor or "Unassigned"


def profit_summary(jobs: Iterable[Job], group_by: str = GROUP_BY_SUBCONTRACTOR) -> ProfitSummary:
    if group_by not in {GROUP_BY_SUBCONTRACTOR, GROUP_BY_LANE}:
        raise ValueError(f"group_by must be '{GROUP_BY_SUBCONTRACTOR}' or '{GROUP_BY_LANE}'")

    active = [job for job in jobs if job.status != JobStatus.CANCELLED]
    groups: Dict[str, ProfitGroup] = {}
    for job in active:
        key = _group_key(job, group_by)
        group = groups.setdefault(key, ProfitGroup(label=key))
        group.jobs += 1
        group.revenue += job_revenue(job)
        group.cost += float(job.cost or 0.0)
        group.profit += job_profit(job)

    for group in groups.values():
        group.margin_percent = _margin(group.profit, group.revenue)

    total_revenue = sum(job_revenue(job) for job in active)
    total_cost = sum(float(job.cost or 0.0) for job in active)
    finished = sum(1 for job in active if job.status in {JobStatus.COMPLETED, JobStatus.BILLED})
    return ProfitSummary(
        group_by=group_by,
        job_count=len(active),
        total_revenue=total_revenue,
        total_cost=total_cost,
        gross_profit=total_revenue - total_cost,
        margin_percent=_margin(total_revenue - total_cost, total_revenue),
        completion_rate=round(finished / len(active) * 100, 2) if active else 0.0,
        groups=sorted(groups.values(), key=lambda group: group.revenue, reverse=True),
    )
