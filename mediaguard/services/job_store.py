# mediaguard/services/job_store.py
"""
Job Store adapters.

Both adapters enforce the lifecycle on every write: status only moves
forward, completed_at is set exactly when a job becomes terminal, a terminal
job never changes again, and a registry position contributes at most one
result per job.
"""
import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from mediaguard.errors import InvalidTransitionError, NotFoundError, PersistenceError
from mediaguard.services.analysis_types import (
    ContentKind,
    Job,
    JobStatus,
    TaskResult,
    can_transition,
    utcnow,
)

JobWithResults = Tuple[Job, List[TaskResult]]

NON_TERMINAL = (JobStatus.PENDING, JobStatus.PROCESSING)


def _check_transition(job_id: str, current: JobStatus, new: JobStatus) -> None:
    if not can_transition(current, new):
        raise InvalidTransitionError(f"job {job_id}: {current.value} -> {new.value} not allowed")


def _check_append(job_id: str, status: JobStatus, positions, result: TaskResult) -> None:
    if status is not JobStatus.PROCESSING:
        raise InvalidTransitionError(f"job {job_id} is {status.value}; results only accepted while processing")
    if result.position is not None and result.position in positions:
        raise InvalidTransitionError(f"job {job_id} already has a result for registry entry {result.position}")


class JobStore(ABC):
    @abstractmethod
    def create_job(self, job: Job) -> Job: ...

    @abstractmethod
    def update_status(self, job_id: str, status: JobStatus, completed_at: Optional[datetime] = None,
                      summary: Optional[Dict[str, Any]] = None, error: Optional[str] = None) -> Job:
        """Move the job forward. completed_at defaults to now for terminal statuses."""

    @abstractmethod
    def append_result(self, job_id: str, result: TaskResult) -> TaskResult: ...

    @abstractmethod
    def get_job(self, job_id: str) -> JobWithResults:
        """Raises NotFoundError for unknown ids."""

    @abstractmethod
    def list_jobs(self, limit: int = 50, status: Optional[JobStatus] = None,
                  content_kind: Optional[ContentKind] = None, offset: int = 0) -> List[JobWithResults]:
        """Newest first; ties on created_at are broken by id so pages are stable."""

    @abstractmethod
    def delete_job(self, job_id: str) -> None: ...

    @abstractmethod
    def list_stale(self, cutoff: datetime) -> List[Job]:
        """Non-terminal jobs created before cutoff."""


class InMemoryJobStore(JobStore):
    """Process-local store; every read returns copies."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._results: Dict[str, List[TaskResult]] = {}
        self._lock = threading.RLock()

    def _get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    def _copy(self, job_id: str) -> JobWithResults:
        return copy.deepcopy(self._jobs[job_id]), copy.deepcopy(self._results[job_id])

    def create_job(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise InvalidTransitionError(f"job {job.id} already exists")
            self._jobs[job.id] = copy.deepcopy(job)
            self._results[job.id] = []
            return copy.deepcopy(job)

    def update_status(self, job_id, status, completed_at=None, summary=None, error=None):
        status = JobStatus(status)
        with self._lock:
            job = self._get(job_id)
            _check_transition(job_id, job.status, status)
            updated = replace(
                job,
                status=status,
                completed_at=(completed_at or utcnow()) if status.is_terminal else None,
                summary=copy.deepcopy(summary) if summary is not None else job.summary,
                error=error if error is not None else job.error,
            )
            self._jobs[job_id] = updated
            return copy.deepcopy(updated)

    def append_result(self, job_id, result):
        with self._lock:
            job = self._get(job_id)
            results = self._results[job_id]
            _check_append(job_id, job.status, {r.position for r in results}, result)
            stored = replace(copy.deepcopy(result), job_id=job_id)
            results.append(stored)
            return copy.deepcopy(stored)

    def get_job(self, job_id):
        with self._lock:
            self._get(job_id)
            return self._copy(job_id)

    def list_jobs(self, limit=50, status=None, content_kind=None, offset=0):
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: (j.created_at, j.id), reverse=True)
            if status is not None:
                jobs = [j for j in jobs if j.status is JobStatus(status)]
            if content_kind is not None:
                jobs = [j for j in jobs if j.content_kind is ContentKind(content_kind)]
            return [self._copy(j.id) for j in jobs[offset:offset + limit]]

    def delete_job(self, job_id):
        with self._lock:
            self._get(job_id)
            del self._jobs[job_id]
            del self._results[job_id]

    def list_stale(self, cutoff):
        with self._lock:
            return [
                copy.deepcopy(j) for j in self._jobs.values()
                if j.status in NON_TERMINAL and j.created_at < cutoff
            ]


class SqlAlchemyJobStore(JobStore):
    """Durable store on the Flask-SQLAlchemy session. Every write commits."""

    def __init__(self, db):
        self.db = db

    @property
    def _session(self):
        return self.db.session

    def _write(self, fn):
        try:
            out = fn()
            self._session.commit()
            return out
        except (InvalidTransitionError, NotFoundError):
            self._session.rollback()
            raise
        except IntegrityError as e:
            self._session.rollback()
            raise InvalidTransitionError(str(e.orig)) from e
        except SQLAlchemyError as e:
            self._session.rollback()
            raise PersistenceError(str(e)) from e

    def _read(self, fn):
        try:
            return fn()
        except SQLAlchemyError as e:
            self._session.rollback()
            raise PersistenceError(str(e)) from e

    def _load(self, job_id: str, for_update: bool = False):
        from mediaguard.models import AnalysisJob

        row = self._session.get(
            AnalysisJob, job_id, populate_existing=True, with_for_update=for_update
        )
        if row is None:
            raise NotFoundError(job_id)
        return row

    def create_job(self, job):
        from mediaguard.models import AnalysisJob

        def _create():
            row = AnalysisJob.from_record(job)
            self._session.add(row)
            return row

        return self._write(_create).to_record()

    def update_status(self, job_id, status, completed_at=None, summary=None, error=None):
        status = JobStatus(status)

        def _update():
            row = self._load(job_id, for_update=True)
            _check_transition(job_id, JobStatus(row.status), status)
            row.status = status.value
            row.completed_at = (completed_at or utcnow()) if status.is_terminal else None
            if summary is not None:
                row.summary = summary
            if error is not None:
                row.error = error[:500]
            return row

        return self._write(_update).to_record()

    def append_result(self, job_id, result):
        from mediaguard.models import AnalysisResult

        def _append():
            row = self._load(job_id, for_update=True)
            _check_append(job_id, JobStatus(row.status), {r.position for r in row.results}, result)
            res = AnalysisResult.from_record(job_id, result)
            self._session.add(res)
            return res

        return self._write(_append).to_record()

    def get_job(self, job_id):
        def _get():
            self._session.expire_all()
            row = self._load(job_id)
            return row.to_record(), [r.to_record() for r in row.results]

        return self._read(_get)

    def list_jobs(self, limit=50, status=None, content_kind=None, offset=0):
        from mediaguard.models import AnalysisJob

        def _list():
            q = AnalysisJob.query
            if status is not None:
                q = q.filter(AnalysisJob.status == JobStatus(status).value)
            if content_kind is not None:
                q = q.filter(AnalysisJob.content_kind == ContentKind(content_kind).value)
            rows = (
                q.order_by(AnalysisJob.created_at.desc(), AnalysisJob.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [(row.to_record(), [r.to_record() for r in row.results]) for row in rows]

        return self._read(_list)

    def delete_job(self, job_id):
        self._write(lambda: self._session.delete(self._load(job_id)))

    def list_stale(self, cutoff):
        from mediaguard.models import AnalysisJob

        def _stale():
            rows = (
                AnalysisJob.query
                .filter(AnalysisJob.status.in_([s.value for s in NON_TERMINAL]))
                .filter(AnalysisJob.created_at < cutoff)
                .all()
            )
            return [row.to_record() for row in rows]

        return self._read(_stale)
