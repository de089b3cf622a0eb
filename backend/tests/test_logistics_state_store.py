"""Unit tests for SQLite persistence of catalog, jobs and the audit trail."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
import json
import re

import pytest

from app.models.audit import Actor, User, UserRole
from app.models.jobs import Job, JobStatus
from app.models.pricing import PriceRecord
from app.services import audit
from app.services.job_lifecycle import TransitionResult
from app.services.logistics_state import LogisticsStateStore
from app.services.migrations import MIGRATIONS, run_migrations


ADMIN = Actor(user_id="ADMIN_001", user_name="System Admin", role=UserRole.ADMIN)


def _job(job_id: str, **kwargs) -> Job:
    data = {"id": job_id, "origin": "A", "destination": "B", "truck_type": "6w"}
    data.update(kwargs)
    return Job(**data)


def test_job_ids_are_unique_under_concurrency(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "ids.db"))
    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(lambda _: store.generate_job_id(2026), range(40)))

    assert len(set(ids)) == 40
    assert all(re.fullmatch(r"JRS-2026-\d{4}", job_id) for job_id in ids)
    assert sorted(ids)[0] == "JRS-2026-0001"


def test_job_sequence_restarts_each_year(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "years.db"))
    assert store.generate_job_id(2025) == "JRS-2025-0001"
    assert store.generate_job_id(2025) == "JRS-2025-0002"
    assert store.generate_job_id(2026) == "JRS-2026-0001"


def test_corrupt_amounts_read_back_as_zero(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "coerce.db"))
    store.save_job(_job("JRS-2026-0001", cost=100, selling_price=150))

    raw = json.loads(
        store._conn.execute("SELECT data_json FROM jobs WHERE job_id = ?", ("JRS-2026-0001",)).fetchone()["data_json"]
    )
    raw["cost"] = None
    raw["selling_price"] = "NaN"
    raw["extra_charge"] = "not-a-number"
    store._conn.execute(
        "UPDATE jobs SET data_json = ? WHERE job_id = ?",
        (json.dumps(raw), "JRS-2026-0001"),
    )
    store._conn.commit()

    job = store.get_job("JRS-2026-0001")
    assert job.cost == 0
    assert job.selling_price == 0
    assert job.extra_charge == 0


def _overwrite_job_json(store: LogisticsStateStore, job_id: str, data_json: str) -> None:
    store._conn.execute("UPDATE jobs SET data_json = ? WHERE job_id = ?", (data_json, job_id))
    store._conn.commit()


def test_malformed_job_rows_are_skipped_not_fatal(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "malformed.db"))
    for job_id in ("JRS-2026-0001", "JRS-2026-0002", "JRS-2026-0003", "JRS-2026-0004"):
        store.save_job(_job(job_id))

    raw = json.loads(
        store._conn.execute("SELECT data_json FROM jobs WHERE job_id = ?", ("JRS-2026-0001",)).fetchone()["data_json"]
    )
    raw["extra_charges"] = [None, "junk", {"id": "EXC-1", "type": "Toll", "amount": "NaN", "reason": "toll"}]
    _overwrite_job_json(store, "JRS-2026-0001", json.dumps(raw))
    _overwrite_job_json(store, "JRS-2026-0002", "null")
    _overwrite_job_json(store, "JRS-2026-0003", "{not json")

    jobs = {job.id: job for job in store.list_jobs()}
    assert sorted(jobs) == ["JRS-2026-0001", "JRS-2026-0004"]
    assert [charge.id for charge in jobs["JRS-2026-0001"].extra_charges] == ["EXC-1"]
    assert jobs["JRS-2026-0001"].extra_charge == 0
    assert store.get_job("JRS-2026-0002") is None
    with pytest.raises(KeyError):
        store.mutate_job("JRS-2026-0003", lambda job: None)


def test_malformed_catalog_rows_are_skipped(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "malformed_catalog.db"))
    store.replace_catalog(
        [
            PriceRecord(origin="A", destination="B", truck_type="6w", subcontractor="X", base_price=10),
            PriceRecord(origin="A", destination="C", truck_type="6w", subcontractor="Y", base_price=20),
        ]
    )
    store._conn.execute("UPDATE price_records SET data_json = ? WHERE position = 0", ("[1, 2]",))
    store._conn.commit()

    assert [record.subcontractor for record in store.list_catalog()] == ["Y"]


def test_catalog_replace_keeps_order(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "catalog.db"))
    records = [
        PriceRecord(origin=" A ", destination="B", truck_type="6w", subcontractor="X", base_price=10),
        PriceRecord(origin="A", destination="B", truck_type="6w", subcontractor="Y", base_price=5),
    ]
    stored = store.replace_catalog(records)
    assert [record.subcontractor for record in stored] == ["X", "Y"]
    assert stored[0].origin == "A"

    assert store.replace_catalog([]) == []


def test_failed_mutation_leaves_job_and_log_untouched(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "atomic.db"))
    store.save_job(_job("JRS-2026-0001"))

    def _boom(job: Job):
        raise ValueError("refused")

    with pytest.raises(ValueError):
        store.mutate_job("JRS-2026-0001", _boom)
    with pytest.raises(KeyError):
        store.mutate_job("JRS-2026-9999", _boom)

    assert store.get_job("JRS-2026-0001").status == JobStatus.NEW_REQUEST
    assert store.count_logs() == 0


def test_mutation_writes_job_and_logs_together(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "mutate.db"))
    store.save_job(_job("JRS-2026-0001"))

    def _rename(job: Job) -> TransitionResult:
        updated = job.model_copy(update={"driver_name": "Somchai"})
        return TransitionResult(job=updated, logs=[audit.emit(job.id, ADMIN, "Driver", None, "Somchai", "Assigned by phone")])

    store.mutate_job("JRS-2026-0001", _rename)
    assert store.get_job("JRS-2026-0001").driver_name == "Somchai"
    assert store.mutate_job("JRS-2026-0001", lambda job: None) is None
    assert store.count_logs("JRS-2026-0001") == 1


def test_logs_ordered_by_timestamp_then_insertion(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "order.db"))
    first = audit.emit("JRS-2026-0001", ADMIN, "Status", None, "New Request", "created")
    second = audit.emit("JRS-2026-0001", ADMIN, "Driver", None, "Somchai", "assigned", timestamp=first.timestamp)
    earlier = audit.emit(
        "JRS-2026-0001",
        ADMIN,
        "Remark",
        None,
        "x",
        "backfilled",
        timestamp=first.timestamp - timedelta(days=1),
    )
    store.append_logs([first, second, earlier])

    assert [log.field for log in store.list_logs("JRS-2026-0001")] == ["Remark", "Status", "Driver"]


def test_hard_delete_keeps_the_audit_row(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "delete.db"))
    store.save_job(_job("JRS-2026-0001"))
    log = audit.emit("JRS-2026-0001", ADMIN, "SYSTEM", "Active", "Deleted", audit.HARD_DELETE_REASON)

    store.delete_job("JRS-2026-0001", log)
    assert store.get_job("JRS-2026-0001") is None
    assert store.list_logs("JRS-2026-0001")[-1].new_value == "Deleted"

    with pytest.raises(KeyError):
        store.delete_job("JRS-2026-0001", audit.emit("JRS-2026-0001", ADMIN, "SYSTEM", "Active", "Deleted", "again"))
    assert store.count_logs("JRS-2026-0001") == 1


def test_user_directory_round_trip_keeps_password_out_of_dumps(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "users.db"))
    store.upsert_user(User(id="ADMIN_001", name="Admin", role=UserRole.ADMIN, username="ADMIN001", password="secret"))
    user = store.get_user("ADMIN_001")
    assert user.password == "secret"
    assert "password" not in user.model_dump()


def test_migrations_run_once(tmp_path):
    store = LogisticsStateStore(str(tmp_path / "migrate.db"))
    applied = run_migrations(store)
    assert applied == [name for name, _ in MIGRATIONS]
    assert {user.role for user in store.list_users()} >= {UserRole.ADMIN, UserRole.ACCOUNTANT}
    assert run_migrations(store) == []
