"""API-level tests for pricing, job lifecycle and accounting routers."""
from __future__ import annotations

import re

from fastapi.testclient import TestClient

from app.main import app


client = TestClient(app)

BOOKING = {"X-User-ID": "BOOKING_001"}
OTHER_BOOKING = {"X-User-ID": "BOOKING_002"}
DISPATCHER = {"X-User-ID": "DISPATCHER_001"}
ACCOUNTANT = {"X-User-ID": "ACCOUNTANT_001"}
ADMIN = {"X-User-ID": "ADMIN_001"}


def _price(origin: str, destination: str, subcontractor: str, base: float, selling: float, **kwargs) -> dict:
    record = {
        "origin": origin,
        "destination": destination,
        "truck_type": kwargs.pop("truck_type", "6w"),
        "subcontractor": subcontractor,
        "base_price": base,
        "selling_base_price": selling,
    }
    record.update(kwargs)
    return record


def _set_catalog(*records: dict) -> dict:
    response = client.put("/pricing/catalog", json={"records": list(records)}, headers=ACCOUNTANT)
    assert response.status_code == 200
    return response.json()


def _create(origin: str, destination: str, headers=BOOKING, **kwargs) -> dict:
    payload = {"origin": origin, "destination": destination, "truck_type": "6w", "date_of_service": "2026-10-20"}
    payload.update(kwargs)
    response = client.post("/jobs", json=payload, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def _complete(job_id: str, subcontractor: str = "X") -> dict:
    assigned = client.post(
        f"/jobs/{job_id}/assign",
        json={"subcontractor": subcontractor, "driver_name": "Somchai", "license_plate": "70-1234"},
        headers=DISPATCHER,
    )
    assert assigned.status_code == 200, assigned.text
    completed = client.post(
        f"/jobs/{job_id}/complete",
        json={"pod_image_urls": ["https://files.example/pod.jpg"], "mileage": "412"},
        headers=DISPATCHER,
    )
    assert completed.status_code == 200, completed.text
    return completed.json()


def test_health_and_root():
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["endpoints"]["jobs"] == "/jobs"


def test_pricing_gated_creation_and_auto_promotion():
    _set_catalog(_price("Promo-A", "Promo-B", "X", 1000, 1200))

    priced = _create("Promo-A", "Promo-B")
    assert re.fullmatch(r"JRS-\d{4}-\d{4}", priced["id"])
    assert priced["status"] == "New Request"
    assert (priced["cost"], priced["selling_price"]) == (1000, 1200)

    pending = _create("Promo-A", "Promo-C")
    assert pending["status"] == "Pending Pricing"
    assert (pending["cost"], pending["selling_price"]) == (0, 0)

    queue = client.get("/pricing/pending", headers=DISPATCHER).json()
    assert pending["id"] in [job["id"] for job in queue["jobs"]]

    replaced = _set_catalog(
        _price("Promo-A", "Promo-B", "X", 1000, 1200),
        _price("Promo-A", "Promo-C", "Y", 500, 700),
    )
    assert pending["id"] in replaced["promoted_job_ids"]

    job = client.get(f"/jobs/{pending['id']}", headers=DISPATCHER).json()
    assert job["status"] == "New Request"
    assert (job["cost"], job["selling_price"]) == (500, 700)

    logs = client.get("/accounting/audit-logs", params={"job_id": pending["id"]}, headers=ACCOUNTANT).json()["logs"]
    assert logs[-1]["field"] == "Status / Pricing"
    assert logs[-1]["user_role"] == "SYSTEM"


def test_quote_returns_candidates_and_no_pricing_message():
    _set_catalog(
        _price("Quote-A", "Quote-B", "X", 1000, 1200, drop_off_fee=100),
        _price("Quote-A", "Quote-B", "Y", 900, 1150),
    )
    quote = client.post(
        "/pricing/quote",
        json={"origin": "Quote-A", "destination": "Quote-B", "truck_type": "6w", "subcontractor": "X", "drop_count": 2},
        headers=BOOKING,
    ).json()
    assert quote["selected"]["subcontractor"] == "X"
    assert len(quote["candidates"]) == 2
    assert quote["total_cost"] == 1200
    assert quote["total_revenue"] == 1400

    missing = client.post(
        "/pricing/quote",
        json={"origin": "Quote-A", "destination": "Nowhere", "truck_type": "6w"},
        headers=BOOKING,
    ).json()
    assert missing["available"] is False


def test_full_lifecycle_through_payment():
    _set_catalog(_price("Life-A", "Life-B", "X", 1000, 1200))
    job = _create("Life-A", "Life-B")

    charge = client.post(
        f"/jobs/{job['id']}/extra-charges",
        json={"type": "Overnight", "amount": 300, "reason": "Waited at DC"},
        headers=DISPATCHER,
    )
    assert charge.status_code == 200
    assert charge.json()["extra_charge"] == 300

    completed = _complete(job["id"])
    assert completed["status"] == "Completed"
    assert completed["accounting_status"] == "Pending Review"

    early_bill = client.post(
        "/accounting/billing",
        json={"job_ids": [job["id"]], "billing_doc_no": "INV-001", "billing_date": "2026-10-21"},
        headers=ACCOUNTANT,
    )
    assert early_bill.status_code == 400

    approved = client.post(
        f"/accounting/jobs/{job['id']}/decision", json={"action": "approve"}, headers=ACCOUNTANT
    ).json()
    assert approved["accounting_status"] == "Approved"
    assert approved["is_base_cost_locked"] is True

    locked_edit = client.patch(
        f"/jobs/{job['id']}/pricing", json={"cost": 800, "reason": "Discount"}, headers=ACCOUNTANT
    )
    assert locked_edit.status_code == 400

    billed = client.post(
        "/accounting/billing",
        json={"job_ids": [job["id"]], "billing_doc_no": "INV-001", "billing_date": "2026-10-21"},
        headers=ACCOUNTANT,
    )
    assert billed.status_code == 200
    assert billed.json()["jobs"][0]["status"] == "Billed"

    paid = client.post(
        "/accounting/payments",
        json={"job_ids": [job["id"]], "payment_date": "2026-11-05"},
        headers=ACCOUNTANT,
    )
    assert paid.status_code == 200
    assert paid.json()["jobs"][0]["accounting_status"] == "Paid"

    transitions = client.get(f"/jobs/{job['id']}/transitions", headers=ACCOUNTANT).json()
    assert transitions["allowed"] == []


def test_reject_reopens_job_for_dispatch():
    _set_catalog(_price("Reject-A", "Reject-B", "X", 1000, 1200))
    job = _create("Reject-A", "Reject-B")
    _complete(job["id"])

    missing_reason = client.post(
        f"/accounting/jobs/{job['id']}/decision", json={"action": "reject"}, headers=ACCOUNTANT
    )
    assert missing_reason.status_code == 400

    rejected = client.post(
        f"/accounting/jobs/{job['id']}/decision",
        json={"action": "reject", "reason": "POD photo unreadable"},
        headers=ACCOUNTANT,
    ).json()
    assert rejected["status"] == "Assigned"
    assert rejected["accounting_status"] == "Rejected"
    assert rejected["accounting_remark"] == "POD photo unreadable"


def test_billing_batch_requires_one_subcontractor():
    _set_catalog(
        _price("Bill-A", "Bill-B", "X", 1000, 1200),
        _price("Bill-A", "Bill-B", "Y", 1100, 1300),
    )
    first = _create("Bill-A", "Bill-B")
    second = _create("Bill-A", "Bill-B")
    _complete(first["id"], subcontractor="X")
    _complete(second["id"], subcontractor="Y")
    for job_id in (first["id"], second["id"]):
        client.post(f"/accounting/jobs/{job_id}/decision", json={"action": "approve"}, headers=ACCOUNTANT)

    response = client.post(
        "/accounting/billing",
        json={"job_ids": [first["id"], second["id"]], "billing_doc_no": "INV-002", "billing_date": "2026-10-21"},
        headers=ACCOUNTANT,
    )
    assert response.status_code == 400
    assert "subcontractor" in response.json()["detail"]
    assert client.get(f"/jobs/{first['id']}", headers=ACCOUNTANT).json()["status"] == "Completed"


def test_role_guards_and_validation_errors():
    _set_catalog(_price("Guard-A", "Guard-B", "X", 1000, 1200))
    job = _create("Guard-A", "Guard-B")

    assert client.post("/jobs", json={"origin": "x", "destination": "y", "truck_type": "6w"}, headers=DISPATCHER).status_code == 403
    assert client.post(f"/jobs/{job['id']}/assign", json={"subcontractor": "X"}, headers=BOOKING).status_code == 403
    assert client.put("/pricing/catalog", json={"records": []}, headers=DISPATCHER).status_code == 403
    assert client.get("/jobs", params={"status": "Teleported"}, headers=ADMIN).status_code == 422
    assert client.get("/jobs/JRS-1999-9999", headers=ADMIN).status_code == 404
    assert client.get("/jobs", headers={"X-User-ID": "NOBODY"}).status_code == 403


def test_cancel_rules():
    _set_catalog(_price("Cancel-A", "Cancel-B", "X", 1000, 1200))
    job = _create("Cancel-A", "Cancel-B")

    assert client.post(f"/jobs/{job['id']}/cancel", json={"reason": ""}, headers=BOOKING).status_code == 400
    assert client.post(f"/jobs/{job['id']}/cancel", json={"reason": "Not mine"}, headers=OTHER_BOOKING).status_code == 403

    cancelled = client.post(f"/jobs/{job['id']}/cancel", json={"reason": "Customer withdrew"}, headers=BOOKING)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "Cancelled"


def test_admin_hard_delete_leaves_audit_row():
    job = _create("Delete-A", "Delete-B")

    assert client.delete(f"/jobs/{job['id']}", headers=DISPATCHER).status_code == 403
    deleted = client.delete(f"/jobs/{job['id']}", headers=ADMIN)
    assert deleted.status_code == 200
    assert client.get(f"/jobs/{job['id']}", headers=ADMIN).status_code == 404

    logs = client.get("/accounting/audit-logs", params={"job_id": job["id"]}, headers=ADMIN).json()["logs"]
    assert logs[-1]["field"] == "SYSTEM"
    assert logs[-1]["reason"] == "Hard Delete by Admin"


def test_profit_report_and_unconfigured_summary():
    _set_catalog(_price("Profit-A", "Profit-B", "ProfitCo", 1000, 1500))
    _create("Profit-A", "Profit-B")

    report = client.get("/reports/profit", headers=ACCOUNTANT).json()
    group = [row for row in report["groups"] if row["label"] == "Unassigned"]
    assert group and group[0]["revenue"] >= 1500
    assert client.get("/reports/profit", params={"group_by": "planet"}, headers=ACCOUNTANT).status_code == 400

    summary = client.post("/reports/notifications/daily-summary", headers=DISPATCHER).json()
    assert summary["delivered"] is False
    assert summary["sent"] == 0
