# mediaguard/services/orchestrator.py
"""
Analysis job orchestrator.

Owns the job state machine (pending -> processing -> completed|failed). A job
is created synchronously by `start_analysis` and handed to a dispatcher; the
dispatcher later calls `execute`, which fans the registry out over a bounded
thread pool and records every TaskResult as soon as its unit finishes.
Results are joined on the calling thread, so only that thread writes to the
store.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from datetime import timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from flask import current_app
from prometheus_client import Counter, Histogram

from mediaguard.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    TaskExecutionError,
    ValidationError,
)
from mediaguard.services.aggregator import aggregate
from mediaguard.services.analysis_types import (
    ContentKind,
    Job,
    JobStatus,
    ModelDescriptor,
    TaskResult,
    new_id,
    utcnow,
)
from mediaguard.services.job_store import JobStore
from mediaguard.services.task_runner import TaskRunner

logger = logging.getLogger(__name__)

JOBS_FINISHED = Counter(
    "mediaguard_analysis_jobs_total", "Analysis jobs that reached a terminal status", ["status"]
)
TASK_SECONDS = Histogram(
    "mediaguard_detection_task_seconds", "Wall time of one detection unit", ["model"]
)

Dispatcher = Callable[[str], None]


def validate_submission(content_ref, content_kind, file_name=None, file_size=None) -> Tuple[str, ContentKind, Optional[str], int]:
    if not isinstance(content_ref, str) or not content_ref.strip() or not content_kind:
        raise ValidationError("Missing required fields")
    try:
        kind = ContentKind(str(content_kind).strip().lower())
    except ValueError:
        raise ValidationError(f"Unsupported contentKind '{content_kind}'")
    if file_name is not None and not isinstance(file_name, str):
        raise ValidationError("'fileName' must be a string")
    if file_size is None:
        file_size = 0
    if isinstance(file_size, bool) or not isinstance(file_size, int) or file_size < 0:
        raise ValidationError("'fileSize' must be a non-negative integer")
    return content_ref.strip(), kind, file_name, file_size


class Orchestrator:
    def __init__(
        self,
        store: JobStore,
        registry: Sequence[ModelDescriptor],
        runner: TaskRunner,
        dispatch: Optional[Dispatcher] = None,
        max_workers: int = 4,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        max_backoff_seconds: float = 5.0,
        sleep=time.sleep,
    ):
        if not registry:
            raise ValueError("Model registry must not be empty")
        self.store = store
        self.registry = tuple(registry)
        self.runner = runner
        self.dispatch = dispatch or self.execute
        self.max_workers = max(1, max_workers)
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._sleep = sleep

    # --- persistence with bounded backoff ---

    def _persist(self, op: str, fn, *args, **kwargs):
        last_error = None
        for attempt in range(self.max_retries + 1):
            try:
                return fn(*args, **kwargs)
            except PersistenceError as e:
                last_error = e
                if attempt == self.max_retries:
                    break
                delay = min(self.backoff_seconds * (2 ** attempt), self.max_backoff_seconds)
                logger.warning(
                    f"Store '{op}' failed (attempt {attempt + 1}/{self.max_retries + 1}), retrying in {delay:.2f}s: {e}",
                    extra={"op": op, "attempt": attempt + 1, "delay_seconds": delay},
                )
                self._sleep(delay)
        logger.error(f"Store '{op}' failed after {self.max_retries + 1} attempts: {last_error}", extra={"op": op})
        raise last_error

    # --- public operations ---

    def start_analysis(self, content_ref, content_kind, file_name=None, file_size=None) -> str:
        ref, kind, name, size = validate_submission(content_ref, content_kind, file_name, file_size)
        job = Job(id=new_id(), content_ref=ref, content_kind=kind, file_name=name, file_size=size)
        self._persist("create", self.store.create_job, job)
        logger.info(f"Analysis job created for {kind.value}", extra={"job_id": job.id, "status": "pending"})

        try:
            self.dispatch(job.id)
        except Exception as e:
            logger.exception("Could not dispatch analysis job", extra={"job_id": job.id})
            self._fail(job.id, f"dispatch failed: {e}")
            raise
        return job.id

    def execute(self, job_id: str) -> Optional[JobStatus]:
        """Drive a pending job to a terminal status. Returns None if the job was deleted meanwhile."""
        try:
            return self._execute(job_id)
        except NotFoundError:
            logger.warning("Job no longer exists, dropping execution", extra={"job_id": job_id})
            return None

    def _execute(self, job_id: str) -> JobStatus:
        job, _ = self._persist("load", self.store.get_job, job_id)
        if job.status is not JobStatus.PENDING:
            logger.warning(f"Job is {job.status.value}, not executing", extra={"job_id": job_id})
            return job.status

        try:
            try:
                self._persist("processing", self.store.update_status, job_id, JobStatus.PROCESSING)
            except PersistenceError as e:
                return self._fail(job_id, f"could not start: {e}")
            logger.info("Analysis job processing", extra={"job_id": job_id, "status": "processing"})

            failure = self._run_tasks(job)
            if failure:
                return self._fail(job_id, failure)

            try:
                _, results = self._persist("load", self.store.get_job, job_id)
                summary = aggregate(results)
                self._persist(
                    "completed", self.store.update_status, job_id, JobStatus.COMPLETED,
                    completed_at=utcnow(), summary=summary.to_dict(),
                )
            except PersistenceError as e:
                return self._fail(job_id, f"could not complete: {e}")
        except InvalidTransitionError as e:
            return self._settle(job_id, e)

        JOBS_FINISHED.labels(status="completed").inc()
        logger.info(
            f"Analysis job completed: {summary.overall_verdict} "
            f"({summary.flagged_count}/{summary.total_models} flagged)",
            extra={"job_id": job_id, "status": "completed"},
        )
        return JobStatus.COMPLETED

    def _settle(self, job_id: str, rejected: InvalidTransitionError) -> JobStatus:
        """A write was rejected; the job still has to end in a terminal status."""
        current, _ = self._persist("load", self.store.get_job, job_id)
        if current.status.is_terminal:
            logger.warning(
                f"Job already {current.status.value}, stopping execution: {rejected}", extra={"job_id": job_id}
            )
            return current.status
        return self._fail(job_id, f"store rejected write: {rejected}")

    def _record(self, job_id: str, result: TaskResult) -> None:
        try:
            self._persist("append", self.store.append_result, job_id, result)
        except InvalidTransitionError:
            # a retried append whose first attempt was committed after all
            job, results = self._persist("load", self.store.get_job, job_id)
            if job.status is not JobStatus.PROCESSING or not any(r.position == result.position for r in results):
                raise
            logger.warning(
                "Result already recorded by an earlier attempt",
                extra={"job_id": job_id, "model": result.model_name},
            )

    def _timed_run(self, descriptor: ModelDescriptor, job: Job):
        with TASK_SECONDS.labels(model=descriptor.name).time():
            return self.runner.run(descriptor, job.content_ref, job.content_kind)

    def _run_tasks(self, job: Job) -> Optional[str]:
        """Returns a failure reason, or None when every unit produced a result."""
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(self.registry)),
            thread_name_prefix=f"analysis-{job.id[:8]}",
        )
        try:
            futures = {
                executor.submit(self._timed_run, descriptor, job): position
                for position, descriptor in enumerate(self.registry)
            }
            for future in as_completed(futures):
                position = futures[future]
                descriptor = self.registry[position]
                try:
                    result = future.result()
                except TaskExecutionError as e:
                    logger.error(f"Detection unit failed: {e}", extra={"job_id": job.id, "model": descriptor.name})
                    return str(e)

                result = replace(result, job_id=job.id, position=position)
                try:
                    self._record(job.id, result)
                except PersistenceError as e:
                    return f"could not record result of {descriptor.name}: {e}"
                logger.info(
                    f"Result recorded: flagged={result.is_flagged} confidence={result.confidence}",
                    extra={"job_id": job.id, "model": descriptor.name},
                )
            return None
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _fail(self, job_id: str, reason: str) -> JobStatus:
        try:
            self._persist(
                "failed", self.store.update_status, job_id, JobStatus.FAILED,
                completed_at=utcnow(), error=reason[:500],
            )
        except InvalidTransitionError:
            current, _ = self._persist("load", self.store.get_job, job_id)
            logger.warning(f"Job already {current.status.value}, not marking failed", extra={"job_id": job_id})
            return current.status
        except PersistenceError:
            logger.exception("Could not record job failure", extra={"job_id": job_id})
            raise
        JOBS_FINISHED.labels(status="failed").inc()
        logger.error(f"Analysis job failed: {reason}", extra={"job_id": job_id, "status": "failed"})
        return JobStatus.FAILED

    def reap_stale(self, timeout_seconds: float) -> List[str]:
        """Force jobs stuck in pending/processing past the timeout to failed."""
        cutoff = utcnow() - timedelta(seconds=timeout_seconds)
        reaped = []
        for job in self._persist("stale", self.store.list_stale, cutoff):
            try:
                self._persist(
                    "failed", self.store.update_status, job.id, JobStatus.FAILED,
                    completed_at=utcnow(), error="timed out",
                )
            except InvalidTransitionError:
                continue  # finished in the meantime
            JOBS_FINISHED.labels(status="failed").inc()
            logger.warning("Stale analysis job marked failed", extra={"job_id": job.id, "status": "failed"})
            reaped.append(job.id)
        return reaped


# --- Flask wiring ---

def _celery_dispatch(job_id: str) -> None:
    from mediaguard.tasks.analysis_tasks import run_analysis
    run_analysis.delay(job_id)


def _thread_dispatch(app) -> Dispatcher:
    def dispatch(job_id: str) -> None:
        def target():
            with app.app_context():
                try:
                    get_orchestrator().execute(job_id)
                except Exception:
                    logger.exception("Background analysis crashed", extra={"job_id": job_id})

        threading.Thread(target=target, name=f"analysis-{job_id[:8]}", daemon=True).start()

    return dispatch


def build_orchestrator(app) -> Orchestrator:
    from mediaguard.models import db
    from mediaguard.services.detection_service import build_detection_unit
    from mediaguard.services.job_store import InMemoryJobStore, SqlAlchemyJobStore
    from mediaguard.services.registry import load_registry

    cfg = app.config
    store_kind = cfg.get("JOB_STORE", "sql").lower()
    store = InMemoryJobStore() if store_kind == "memory" else SqlAlchemyJobStore(db)

    seed = cfg.get("DETECTION_SEED")
    runner = TaskRunner(build_detection_unit(
        seed=int(seed) if seed not in (None, "") else None,
        latency_scale=float(cfg.get("DETECTION_LATENCY_SCALE", 1.0)),
        remote_timeout=float(cfg.get("REMOTE_DETECTION_TIMEOUT", 20)),
    ))

    orchestrator = Orchestrator(
        store=store,
        registry=load_registry(cfg.get("MODEL_REGISTRY_PATH")),
        runner=runner,
        max_workers=int(cfg.get("ANALYSIS_MAX_WORKERS", 4)),
        max_retries=int(cfg.get("PERSIST_MAX_RETRIES", 3)),
        backoff_seconds=float(cfg.get("PERSIST_BACKOFF_SECONDS", 0.5)),
        max_backoff_seconds=float(cfg.get("PERSIST_MAX_BACKOFF_SECONDS", 5.0)),
    )

    mode = cfg.get("ANALYSIS_DISPATCH", "celery").lower()
    if mode == "celery":
        orchestrator.dispatch = _celery_dispatch
    elif mode == "thread":
        orchestrator.dispatch = _thread_dispatch(app)
    # "inline" keeps execute() as the dispatcher
    return orchestrator


def init_app(app) -> None:
    from mediaguard.services.progress import ProgressReader

    orchestrator = build_orchestrator(app)
    app.extensions["mediaguard.orchestrator"] = orchestrator
    app.extensions["mediaguard.progress"] = ProgressReader(
        orchestrator.store, page_size=int(app.config.get("STATS_PAGE_SIZE", 500))
    )
    app.logger.info(
        f"Orchestrator ready: {len(orchestrator.registry)} detection units, "
        f"dispatch={app.config.get('ANALYSIS_DISPATCH', 'celery')}"
    )


def get_orchestrator() -> Orchestrator:
    return current_app.extensions["mediaguard.orchestrator"]
