"""SQLite-backed state store for the price catalog, jobs, audit trail and users."""
from __future__ import annotations

import json
import math
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Callable, Dict, Iterable, List, Optional

from app.core.config import get_settings
from app.core.logging import logger
from app.models.audit import AuditLog, User
from app.models.jobs import Job, JobStatus
from app.models.pricing import PriceRecord

AMOUNT_FIELDS = ("cost", "selling_price", "extra_charge")
CATALOG_AMOUNT_FIELDS = ("base_price", "selling_base_price")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _load_object(data_json: str) -> Dict[str, Any]:
    value = json.loads(data_json)
    if not isinstance(value, dict):
        raise TypeError(f"expected a JSON object, got {type(value).__name__}")
    return value


def _coerce_amount(value: Any) -> float:
    """Map missing or corrupt numeric values to 0 so arithmetic stays defined."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _coerce_job_row(row: Dict[str, Any]) -> Dict[str, Any]:
    for key in AMOUNT_FIELDS:
        row[key] = _coerce_amount(row.get(key))
    raw_charges = row.get("extra_charges")
    charges = [charge for charge in raw_charges if isinstance(charge, dict)] if isinstance(raw_charges, list) else []
    for charge in charges:
        charge["amount"] = _coerce_amount(charge.get("amount"))
    row["extra_charges"] = charges
    if charges:
        row["extra_charge"] = sum(charge["amount"] for charge in charges)
    return row


def _coerce_price_row(row: Dict[str, Any]) -> Dict[str, Any]:
    for key in CATALOG_AMOUNT_FIELDS:
        row[key] = max(0.0, _coerce_amount(row.get(key)))
    if row.get("drop_off_fee") is not None:
        row["drop_off_fee"] = max(0.0, _coerce_amount(row.get("drop_off_fee")))
    return row


class LogisticsStateStore:
    """Durable state manager for pricing, job lifecycle and audit domains."""

    _lock_registry: dict[str, RLock] = {}
    _lock_registry_guard = Lock()

    def __init__(self, db_path: Optional[str] = None) -> None:
        settings = get_settings()
        self._db_path = Path(db_path or settings.logistics_db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = self._get_shared_lock(str(self._db_path.resolve()))
        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            timeout=30.0,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 30000")
        self._initialize_schema()

    @classmethod
    def _get_shared_lock(cls, key: str) -> RLock:
        with cls._lock_registry_guard:
            lock = cls._lock_registry.get(key)
            if lock is None:
                lock = RLock()
                cls._lock_registry[key] = lock
            return lock

    @property
    def lock(self) -> RLock:
        return self._lock

    def _initialize_schema(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS sequences (
                    key_name TEXT PRIMARY KEY,
                    next_value INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS price_records (
                    position INTEGER PRIMARY KEY,
                    data_json TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    data_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs (status);

                CREATE TABLE IF NOT EXISTS audit_logs (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    log_id TEXT NOT NULL UNIQUE,
                    job_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    data_json TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_audit_logs_job ON audit_logs (job_id, timestamp, seq);

                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    data_json TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS migrations (
                    name TEXT PRIMARY KEY,
                    applied_at TEXT NOT NULL
                );
                """
            )
            self._conn.commit()

    # -- sequences ---------------------------------------------------------

    def next_sequence(self, key: str, start: int = 1) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT next_value FROM sequences WHERE key_name = ?",
                (key,),
            ).fetchone()
            if row is None:
                current = start
                self._conn.execute(
                    "INSERT INTO sequences (key_name, next_value) VALUES (?, ?)",
                    (key, current + 1),
                )
            else:
                current = int(row["next_value"])
                self._conn.execute(
                    "UPDATE sequences SET next_value = ? WHERE key_name = ?",
                    (current + 1, key),
                )
            self._conn.commit()
            return current

    def _highest_job_sequence(self, prefix: str) -> int:
        rows = self._conn.execute(
            "SELECT job_id FROM jobs WHERE job_id LIKE ?",
            (f"{prefix}%",),
        ).fetchall()
        highest = 0
        for row in rows:
            tail = str(row["job_id"])[len(prefix):]
            if tail.isdigit():
                highest = max(highest, int(tail))
        return highest

    def generate_job_id(self, year: Optional[int] = None) -> str:
        """Allocate the next ``<PREFIX>-<year>-<seq>`` id; numbering restarts each year."""
        settings = get_settings()
        year = year or datetime.now(timezone.utc).year
        prefix = f"{settings.job_id_prefix}-{year}-"
        with self._lock:
            start = self._highest_job_sequence(prefix) + 1
            seq = self.next_sequence(f"job:{year}", start=start)
        return f"{prefix}{seq:04d}"

    # -- price catalog -----------------------------------------------------

    def replace_catalog(self, records: Iterable[PriceRecord]) -> List[PriceRecord]:
        rows = [record.model_dump(mode="json") for record in records]
        with self._lock:
            try:
                self._conn.execute("DELETE FROM price_records")
                self._conn.executemany(
                    "INSERT INTO price_records (position, data_json) VALUES (?, ?)",
                    [(index, _json_dumps(row)) for index, row in enumerate(rows)],
                )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return self.list_catalog()

    def list_catalog(self) -> List[PriceRecord]:
        with self._lock:
            rows = self._conn.execute("SELECT position, data_json FROM price_records ORDER BY position").fetchall()
        records: List[PriceRecord] = []
        for row in rows:
            try:
                raw = _load_object(row["data_json"])
                records.append(PriceRecord(**_coerce_price_row(raw)))
            except (ValueError, TypeError, AttributeError) as exc:
                logger.warning("Skipping malformed price record", position=row["position"], error=str(exc))
        return records

    # -- jobs --------------------------------------------------------------

    def _row_to_job(self, job_id: str, data_json: str) -> Optional[Job]:
        try:
            return Job(**_coerce_job_row(_load_object(data_json)))
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning("Skipping malformed job row", job_id=job_id, error=str(exc))
            return None

    def _write_job(self, job: Job) -> None:
        row = job.model_dump(mode="json")
        self._conn.execute(
            """
            INSERT INTO jobs (job_id, status, data_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(job_id)
            DO UPDATE SET status = excluded.status, data_json = excluded.data_json, updated_at = excluded.updated_at
            """,
            (job.id, job.status.value, _json_dumps(row), _utc_now_iso()),
        )

    def _write_logs(self, logs: Iterable[AuditLog]) -> None:
        for log in logs:
            row = log.model_dump(mode="json")
            self._conn.execute(
                "INSERT INTO audit_logs (log_id, job_id, timestamp, data_json) VALUES (?, ?, ?, ?)",
                (log.id, log.job_id, row["timestamp"], _json_dumps(row)),
            )

    def save_job(self, job: Job, logs: Iterable[AuditLog] = ()) -> Job:
        """Persist a job and its audit entries in one transaction."""
        with self._lock:
            try:
                self._write_job(job)
                self._write_logs(logs)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            row = self._conn.execute("SELECT job_id, data_json FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
        if not row:
            return None
        return self._row_to_job(row["job_id"], row["data_json"])

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[Job]:
        with self._lock:
            if status is None:
                rows = self._conn.execute("SELECT job_id, data_json FROM jobs ORDER BY job_id").fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT job_id, data_json FROM jobs WHERE status = ? ORDER BY job_id",
                    (JobStatus(status).value,),
                ).fetchall()
        jobs = [self._row_to_job(row["job_id"], row["data_json"]) for row in rows]
        return [job for job in jobs if job is not None]

    def mutate_job(self, job_id: str, mutation: Callable[[Job], Any]) -> Any:
        """Read-modify-write one job atomically.

        ``mutation`` receives the current job and returns an object with
        ``job`` and ``logs`` attributes, or ``None`` for "nothing to do". The
        job write and its audit rows commit together or not at all.
        """
        with self._lock:
            job = self.get_job(job_id)
            if job is None:
                raise KeyError(job_id)
            result = mutation(job)
            if result is None:
                return None
            try:
                self._write_job(result.job)
                self._write_logs(result.logs)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
            return result

    def delete_job(self, job_id: str, log: AuditLog) -> None:
        """Hard delete. The audit row is written first in the same transaction."""
        with self._lock:
            try:
                self._write_logs([log])
                cursor = self._conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
                if cursor.rowcount == 0:
                    raise KeyError(job_id)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    # -- audit trail -------------------------------------------------------

    def append_logs(self, logs: Iterable[AuditLog]) -> None:
        with self._lock:
            try:
                self._write_logs(logs)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def list_logs(self, job_id: Optional[str] = None, limit: int = 500) -> List[AuditLog]:
        with self._lock:
            if job_id:
                rows = self._conn.execute(
                    """
                    SELECT data_json FROM audit_logs
                    WHERE job_id = ?
                    ORDER BY timestamp ASC, seq ASC
                    LIMIT ?
                    """,
                    (job_id, limit),
                ).fetchall()
            else:
                rows = self._conn.execute(
                    """
                    SELECT data_json FROM (
                        SELECT seq, timestamp, data_json FROM audit_logs
                        ORDER BY timestamp DESC, seq DESC
                        LIMIT ?
                    )
                    ORDER BY timestamp ASC, seq ASC
                    """,
                    (limit,),
                ).fetchall()
        return [AuditLog(**json.loads(row["data_json"])) for row in rows]

    def count_logs(self, job_id: Optional[str] = None) -> int:
        with self._lock:
            if job_id:
                row = self._conn.execute("SELECT COUNT(*) AS c FROM audit_logs WHERE job_id = ?", (job_id,)).fetchone()
            else:
                row = self._conn.execute("SELECT COUNT(*) AS c FROM audit_logs").fetchone()
        return int(row["c"])

    # -- user directory ----------------------------------------------------

    def upsert_user(self, user: User) -> User:
        row = user.model_dump(mode="json")
        row["password"] = user.password
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO users (user_id, data_json) VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET data_json = excluded.data_json
                """,
                (user.id, _json_dumps(row)),
            )
            self._conn.commit()
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            row = self._conn.execute("SELECT data_json FROM users WHERE user_id = ?", (user_id,)).fetchone()
        if not row:
            return None
        return User(**json.loads(row["data_json"]))

    def list_users(self) -> List[User]:
        with self._lock:
            rows = self._conn.execute("SELECT data_json FROM users ORDER BY user_id").fetchall()
        return [User(**json.loads(row["data_json"])) for row in rows]

    # -- migrations --------------------------------------------------------

    def migration_applied(self, name: str) -> bool:
        with self._lock:
            row = self._conn.execute("SELECT 1 FROM migrations WHERE name = ?", (name,)).fetchone()
        return row is not None

    def mark_migration(self, name: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR IGNORE INTO migrations (name, applied_at) VALUES (?, ?)",
                (name, _utc_now_iso()),
            )
            self._conn.commit()


logistics_state_store = LogisticsStateStore()
