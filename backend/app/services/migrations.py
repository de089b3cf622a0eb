"""Idempotent data migrations applied once at load time.

Each migration is recorded in the ``migrations`` table after it runs, so
restarting the service never re-applies it. Steady-state code never patches
data on read beyond numeric coercion.
"""
from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from app.core.config import get_settings
from app.core.logging import logger
from app.models.audit import User, UserRole
from app.models.jobs import AccountingStatus, JobStatus
from app.models.pricing import PriceRecord
from app.services.logistics_state import LogisticsStateStore

DEFAULT_USERS = [
    User(id="ADMIN_001", name="System Admin", role=UserRole.ADMIN, username="ADMIN001"),
    User(id="ACCOUNTANT_001", name="ADMIN Accountant", role=UserRole.ACCOUNTANT, username="ACCOUNT001"),
    User(id="DISPATCHER_001", name="Fleet Dispatcher", role=UserRole.DISPATCHER, username="DISPATCH001"),
    User(id="BOOKING_001", name="Booking Officer 1", role=UserRole.BOOKING_OFFICER, username="BOOKING001"),
    User(id="BOOKING_002", name="Booking Officer 2", role=UserRole.BOOKING_OFFICER, username="BOOKING002"),
]

DEFAULT_PRICE_RECORDS = [
    PriceRecord(origin="ซีโน่ คลองส่งน้ำ", destination="เมืองกำแพงเพชร", subcontractor="KNN", truck_type="6w", base_price=9600),
    PriceRecord(origin="ซีโน่ คลองส่งน้ำ", destination="เมืองกำแพงเพชร", subcontractor="KNN", truck_type="6w พ่วง", base_price=12960),
    PriceRecord(origin="ซีโน่ คลองส่งน้ำ", destination="เมืองเชียงใหม่", subcontractor="KNN", truck_type="6w", base_price=16560),
    PriceRecord(origin="ซีโน่ คลองส่งน้ำ", destination="เมืองนครสวรรค์", subcontractor="KNN", truck_type="6w", base_price=6480),
    PriceRecord(origin="โบทาเร่ ลาดกระบัง", destination="DC1 โพธาราม", subcontractor="PTK", truck_type="4w", base_price=2070),
    PriceRecord(origin="โบทาเร่ ลาดกระบัง", destination="DC1 โพธาราม", subcontractor="YSK", truck_type="6w", base_price=5525),
    PriceRecord(origin="โบทาเร่ ลาดกระบัง", destination="DC2 ฉะเชิงเทรา", subcontractor="PTK", truck_type="4w", base_price=1440),
    PriceRecord(origin="โบทาเร่ ลาดกระบัง", destination="DC2 ฉะเชิงเทรา", subcontractor="YSK", truck_type="6w", base_price=4250),
    PriceRecord(
        origin="ซีโน่ คลองส่งน้ำ",
        destination="ekp ลำปาง",
        subcontractor="เบญจวรรณ ขนส่ง",
        truck_type="6w พ่วง",
        base_price=21000,
        drop_off_fee=1000,
    ),
    PriceRecord(
        origin="ซีโน่ คลองส่งน้ำ",
        destination="นีโอสยามกำแพงเพชร",
        subcontractor="เบญจวรรณ ขนส่ง",
        truck_type="10w พ่วง",
        base_price=16500,
        drop_off_fee=1000,
    ),
    PriceRecord(origin="สมุทรปราการ", destination="เมืองนครสวรรค์", subcontractor="คอมม่าพลัส", truck_type="10w", base_price=7000),
]


def seed_user_directory(store: LogisticsStateStore) -> int:
    if store.list_users():
        return 0
    for user in DEFAULT_USERS:
        store.upsert_user(user)
    return len(DEFAULT_USERS)


def seed_default_catalog(store: LogisticsStateStore) -> int:
    if not get_settings().seed_default_catalog or store.list_catalog():
        return 0
    store.replace_catalog(DEFAULT_PRICE_RECORDS)
    return len(DEFAULT_PRICE_RECORDS)


def normalize_lane_whitespace(store: LogisticsStateStore) -> int:
    """Trim lane fields that older clients stored with stray whitespace."""
    catalog = store.list_catalog()
    if catalog:
        # PriceRecord strips on construction; rewriting persists the trimmed form.
        store.replace_catalog(catalog)

    touched = 0
    for job in store.list_jobs():
        trimmed = (job.origin.strip(), job.destination.strip(), job.truck_type.strip())
        if trimmed != (job.origin, job.destination, job.truck_type):
            job.origin, job.destination, job.truck_type = trimmed
            store.save_job(job)
            touched += 1
    return touched


def backfill_accounting_status(store: LogisticsStateStore) -> int:
    """Completed jobs saved before review tracking existed start as Pending Review."""
    touched = 0
    for job in store.list_jobs(status=JobStatus.COMPLETED):
        if job.accounting_status is None:
            job.accounting_status = AccountingStatus.PENDING_REVIEW
            store.save_job(job)
            touched += 1
    return touched


MIGRATIONS: List[Tuple[str, Callable[[LogisticsStateStore], int]]] = [
    ("0001_seed_user_directory", seed_user_directory),
    ("0002_seed_default_catalog", seed_default_catalog),
    ("0003_normalize_lane_whitespace", normalize_lane_whitespace),
    ("0004_backfill_accounting_status", backfill_accounting_status),
]


def run_migrations(store: LogisticsStateStore, only: Optional[List[str]] = None) -> List[str]:
    """Apply pending migrations in order and return the names that ran."""
    applied: List[str] = []
    with store.lock:
        for name, migration in MIGRATIONS:
            if only is not None and name not in only:
                continue
            if store.migration_applied(name):
                continue
            touched = migration(store)
            store.mark_migration(name)
            applied.append(name)
            logger.info("Applied data migration", migration=name, touched=touched)
    return applied
