from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from dealforge_lookup.freshness import utc_now
from dealforge_lookup.orchestrator import LookupFailed, LookupOrchestrator
from dealforge_lookup.store import StorageUnavailable, from_iso, to_iso


logger = logging.getLogger("dfl.jobs")


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobType(str, Enum):
    TDHCA_TITLES_SYNC = "tdhca_titles_sync"
    TDHCA_LIENS_SYNC = "tdhca_liens_sync"
    DISCOVER_PARKS = "discover_parks"
    CALCULATE_DISTRESS = "calculate_distress"
    CSV_IMPORT = "csv_import"
    LOOKUP_REFRESH = "lookup_refresh"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
}


class InvalidJobTransition(ValueError):
    pass


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


@dataclass
class Job:
    id: str
    type: JobType
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    parameters: Dict[str, Any] = field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "parameters": self.parameters,
            "result": self.result,
            "error_message": self.error_message,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "started_at": to_iso(self.started_at) if self.started_at else None,
            "completed_at": to_iso(self.completed_at) if self.completed_at else None,
        }


_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    parameters TEXT,
    result TEXT,
    error_message TEXT,
    started_at TEXT,
    completed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS jobs_status_idx ON jobs(status);
CREATE INDEX IF NOT EXISTS jobs_type_idx ON jobs(type);
CREATE INDEX IF NOT EXISTS jobs_created_at_idx ON jobs(created_at);
"""


def _opt_time(raw: Optional[str]) -> Optional[datetime]:
    return from_iso(raw) if raw else None


def _opt_json(raw: Optional[str]) -> Any:
    return json.loads(raw) if raw else None


class JobStore:
    """SQLite persistence for background jobs."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.executescript(_SCHEMA)
        except (OSError, sqlite3.Error) as exc:
            raise StorageUnavailable(f"cannot open job store at {self.path}: {exc}") from exc

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(str(self.path))) as conn:
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            type=JobType(row["type"]),
            status=JobStatus(row["status"]),
            parameters=_opt_json(row["parameters"]) or {},
            result=_opt_json(row["result"]),
            error_message=row["error_message"],
            started_at=_opt_time(row["started_at"]),
            completed_at=_opt_time(row["completed_at"]),
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
        )

    def create(
        self,
        job_type: JobType,
        parameters: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Job:
        now = now or utc_now()
        job_id = f"job_{uuid.uuid4().hex[:20]}"
        stamp = to_iso(now)
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO jobs (id, type, status, parameters, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    job_id,
                    JobType(job_type).value,
                    JobStatus.PENDING.value,
                    json.dumps(parameters or {}, sort_keys=True),
                    stamp,
                    stamp,
                ),
            )
        return self.get(job_id)

    def get(self, job_id: str) -> Job:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise KeyError(f"Unknown job: {job_id}")
        return self._row_to_job(row)

    def list(self, status: Optional[JobStatus] = None, limit: int = 100) -> List[Job]:
        sql = "SELECT * FROM jobs"
        params: list = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(JobStatus(status).value)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(max(1, int(limit)))
        with self._connect() as conn:
            return [self._row_to_job(r) for r in conn.execute(sql, params).fetchall()]

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        now: Optional[datetime] = None,
        *,
        result: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> Job:
        """Move a job forward. Back-transitions and leaving a terminal state raise."""

        target = JobStatus(status)
        now = now or utc_now()
        stamp = to_iso(now)
        with self._connect() as conn:
            row = conn.execute("SELECT status FROM jobs WHERE id = ?", (job_id,)).fetchone()
            if row is None:
                raise KeyError(f"Unknown job: {job_id}")
            current = JobStatus(row["status"])
            if not can_transition(current, target):
                raise InvalidJobTransition(f"job {job_id}: {current.value} -> {target.value}")
            sets = ["status = ?", "updated_at = ?"]
            params: list = [target.value, stamp]
            if target is JobStatus.RUNNING:
                sets.append("started_at = ?")
                params.append(stamp)
            if target in TERMINAL_STATUSES:
                sets.append("completed_at = ?")
                params.append(stamp)
            if result is not None:
                sets.append("result = ?")
                params.append(json.dumps(result, sort_keys=True, default=str))
            if error_message is not None:
                sets.append("error_message = ?")
                params.append(error_message)
            # Guarded on the status we read so two movers cannot both win.
            cur = conn.execute(
                f"UPDATE jobs SET {', '.join(sets)} WHERE id = ? AND status = ?",
                (*params, job_id, current.value),
            )
            if cur.rowcount != 1:
                raise InvalidJobTransition(f"job {job_id}: status changed concurrently")
        return self.get(job_id)


def run_refresh_job(
    job_store: JobStore,
    orchestrator: LookupOrchestrator,
    domain: str,
    keys: Iterable[str],
    now: Optional[datetime] = None,
) -> Job:
    """Force-refresh cached keys for one domain as a tracked job.

    Goes through the orchestrator so writes obey the same upsert rules as
    on-demand lookups.
    """

    now = now or utc_now()
    key_list = [k for k in keys if k]
    job = job_store.create(JobType.LOOKUP_REFRESH, {"domain": domain, "keys": len(key_list)}, now)
    job_store.transition(job.id, JobStatus.RUNNING, now)

    counts = {"refreshed": 0, "degraded": 0, "failed": 0}
    failures: Dict[str, str] = {}
    for key in key_list:
        try:
            res = orchestrator.resolve(domain, key, now, force_refresh=True)
        except LookupFailed as exc:
            counts["failed"] += 1
            failures[key] = exc.reason
            continue
        counts["degraded" if res.degraded else "refreshed"] += 1

    result = dict(counts, failures=failures)
    logger.info("refresh job %s for %s: %s", job.id, domain, counts)
    if key_list and counts["failed"] == len(key_list):
        return job_store.transition(
            job.id,
            JobStatus.FAILED,
            now,
            result=result,
            error_message=f"all {len(key_list)} lookups failed",
        )
    return job_store.transition(job.id, JobStatus.COMPLETED, now, result=result)
