"""Outbound chat summary of jobs still waiting for delivery confirmation."""
from __future__ import annotations

from datetime import date
from html import escape
from typing import Any, Dict, Iterable, List, Optional

import httpx

from app.core.config import get_settings
from app.core.logging import logger
from app.models.jobs import Job, JobStatus


def _job_block(index: int, job: Job) -> str:
    route = f"{job.origin} → {job.destination}" if job.origin and job.destination else "-"
    plate = f" ({job.license_plate})" if job.license_plate else ""
    truck = f"{job.truck_type}{plate}" if job.truck_type else "-"
    return "\n".join(
        [
            "",
            f"{index}. <b>{escape(job.id)}</b>",
            f"   Date: {escape(job.date_of_service or '-')}",
            f"   Route: {escape(route)}",
            f"   Truck: {escape(truck)}",
            f"   Driver: {escape(job.driver_name or '-')}",
        ]
    )


def build_summary_messages(
    jobs: Iterable[Job],
    max_chars: int = 3500,
    today: Optional[date] = None,
    pending_pricing: int = 0,
) -> List[str]:
    """Render the pending-completion summary, split so no message exceeds ``max_chars``."""
    day = (today or date.today()).isoformat()
    pending = sorted(
        (job for job in jobs if job.status == JobStatus.ASSIGNED),
        key=lambda job: job.date_of_service or "",
    )
    pricing_line = f"Jobs waiting for a catalog price: <b>{pending_pricing}</b>" if pending_pricing else ""

    if not pending:
        lines = ["<b>Daily job summary</b>", day, "", "No jobs are waiting for delivery confirmation."]
        if pricing_line:
            lines.append(pricing_line)
        return ["\n".join(lines)]

    footer = "\n\nPlease confirm job completion in the system."
    header_lines = [
        "<b>Jobs awaiting delivery confirmation</b>",
        day,
        "",
        f"Found <b>{len(pending)}</b> job(s) not yet completed.",
    ]
    if pricing_line:
        header_lines.append(pricing_line)

    messages: List[str] = []
    current = "\n".join(header_lines)
    for index, job in enumerate(pending, start=1):
        block = _job_block(index, job)
        if len(current + block + footer) > max_chars:
            messages.append(current + footer)
            current = f"<b>Jobs awaiting delivery confirmation (part {len(messages) + 1})</b>\n"
        current += block
    messages.append(current + footer)
    return messages


class ChatNotifier:
    """Thin Telegram Bot API client."""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.settings = get_settings()
        self._transport = transport

    def _send(self, client: httpx.Client, text: str) -> None:
        url = f"{self.settings.telegram_base_url.rstrip('/')}/bot{self.settings.telegram_bot_token}/sendMessage"
        payload = {"chat_id": self.settings.telegram_chat_id, "text": text, "parse_mode": "HTML"}
        response = client.post(url, json=payload)
        response.raise_for_status()

    def send_daily_summary(self, jobs: List[Job], today: Optional[date] = None) -> Dict[str, Any]:
        pending_pricing = sum(1 for job in jobs if job.status == JobStatus.PENDING_PRICING)
        messages = build_summary_messages(
            jobs,
            max_chars=self.settings.notification_max_chars,
            today=today,
            pending_pricing=pending_pricing,
        )
        pending = sum(1 for job in jobs if job.status == JobStatus.ASSIGNED)

        if not self.settings.telegram_configured():
            logger.warning("Telegram not configured; summary not sent", pending_jobs=pending)
            return {"sent": 0, "messages": messages, "pending_jobs": pending, "delivered": False}

        try:
            with httpx.Client(timeout=self.settings.telegram_timeout_seconds, transport=self._transport) as client:
                for text in messages:
                    self._send(client, text)
        except httpx.HTTPError as exc:
            logger.error("Telegram summary failed", error=str(exc), pending_jobs=pending)
            raise RuntimeError(f"Telegram sendMessage failed: {exc}") from exc

        logger.info("Telegram summary sent", messages=len(messages), pending_jobs=pending)
        return {"sent": len(messages), "messages": messages, "pending_jobs": pending, "delivered": True}
