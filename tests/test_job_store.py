from datetime import timedelta

import pytest

from sqlalchemy.exc import OperationalError

from mediaguard.errors import InvalidTransitionError, NotFoundError, PersistenceError
from mediaguard.models import db, AnalysisJob, AnalysisResult
from mediaguard.services.analysis_types import (
    ContentKind,
    DetectionType,
    Job,
    JobStatus,
    TaskResult,
    new_id,
    utcnow,
)
from mediaguard.services.job_store import InMemoryJobStore, SqlAlchemyJobStore
from mediaguard.services.orchestrator import Orchestrator
from mediaguard.services.task_runner import TaskRunner


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        yield InMemoryJobStore()
        return
    request.getfixturevalue("app")
    yield SqlAlchemyJobStore(db)
    db.session.rollback()
    AnalysisResult.query.delete()
    AnalysisJob.query.delete()
    db.session.commit()


def _job(kind=ContentKind.IMAGE, **kwargs):
    return Job(id=new_id(), content_ref="abc.jpg", content_kind=kind, **kwargs)


def _result(position, flagged=True):
    return TaskResult(
        model_name=f"unit-{position}",
        model_version="v1",
        is_flagged=flagged,
        confidence=81.25,
        detection_type=DetectionType.DEEPFAKE if flagged else DetectionType.AUTHENTIC,
        metadata={"detectedArtifacts": ["Unnatural facial symmetry"]},
        position=position,
        processing_ms=640,
    )


def test_create_and_get(store):
    job = store.create_job(_job(file_name="abc.jpg", file_size=2048))

    loaded, results = store.get_job(job.id)

    assert loaded.id == job.id
    assert loaded.status is JobStatus.PENDING
    assert loaded.content_kind is ContentKind.IMAGE
    assert loaded.file_name == "abc.jpg"
    assert loaded.file_size == 2048
    assert loaded.completed_at is None
    assert results == []


def test_unknown_job(store):
    with pytest.raises(NotFoundError):
        store.get_job("missing")
    with pytest.raises(NotFoundError):
        store.update_status("missing", JobStatus.PROCESSING)


def test_status_moves_forward_and_sets_completed_at(store):
    job = store.create_job(_job())

    processing = store.update_status(job.id, JobStatus.PROCESSING)
    assert processing.completed_at is None

    done = store.update_status(job.id, JobStatus.COMPLETED, summary={"overallVerdict": "flagged"})
    assert done.status is JobStatus.COMPLETED
    assert done.completed_at is not None
    assert done.summary == {"overallVerdict": "flagged"}


@pytest.mark.parametrize("path", [
    [JobStatus.PROCESSING, JobStatus.PENDING],
    [JobStatus.PROCESSING, JobStatus.PROCESSING],
    [JobStatus.COMPLETED],
    [JobStatus.PROCESSING, JobStatus.FAILED, JobStatus.COMPLETED],
    [JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED],
])
def test_illegal_transitions_rejected(store, path):
    job = store.create_job(_job())
    *allowed, illegal = path
    for status in allowed:
        store.update_status(job.id, status)

    before, _ = store.get_job(job.id)
    with pytest.raises(InvalidTransitionError):
        store.update_status(job.id, illegal)
    after, _ = store.get_job(job.id)
    assert after.status is before.status


def test_pending_job_can_fail_directly(store):
    job = store.create_job(_job())
    failed = store.update_status(job.id, JobStatus.FAILED, error="timed out")
    assert failed.error == "timed out"
    assert failed.completed_at is not None


def test_append_is_visible_immediately(store):
    job = store.create_job(_job())
    store.update_status(job.id, JobStatus.PROCESSING)

    store.append_result(job.id, _result(0))
    _, results = store.get_job(job.id)
    assert len(results) == 1

    store.append_result(job.id, _result(1, flagged=False))
    _, results = store.get_job(job.id)
    assert [r.position for r in results] == [0, 1]
    assert results[0].job_id == job.id
    assert results[0].confidence == 81.25
    assert results[0].detection_type is DetectionType.DEEPFAKE
    assert results[0].metadata == {"detectedArtifacts": ["Unnatural facial symmetry"]}
    assert results[0].processing_ms == 640


def test_append_requires_processing(store):
    job = store.create_job(_job())
    with pytest.raises(InvalidTransitionError):
        store.append_result(job.id, _result(0))


def test_append_after_terminal_rejected(store):
    job = store.create_job(_job())
    store.update_status(job.id, JobStatus.PROCESSING)
    store.append_result(job.id, _result(0))
    store.update_status(job.id, JobStatus.FAILED, error="unit-1: unreachable")

    with pytest.raises(InvalidTransitionError):
        store.append_result(job.id, _result(1))
    _, results = store.get_job(job.id)
    assert len(results) == 1


def test_one_result_per_registry_entry(store):
    job = store.create_job(_job())
    store.update_status(job.id, JobStatus.PROCESSING)
    store.append_result(job.id, _result(0))

    with pytest.raises(InvalidTransitionError):
        store.append_result(job.id, _result(0))
    _, results = store.get_job(job.id)
    assert len(results) == 1


def test_list_jobs_newest_first_with_filters(store):
    now = utcnow()
    old = store.create_job(_job(created_at=now - timedelta(minutes=5)))
    mid = store.create_job(_job(kind=ContentKind.VIDEO, created_at=now - timedelta(minutes=2)))
    new = store.create_job(_job(created_at=now))
    store.update_status(new.id, JobStatus.FAILED)

    assert [j.id for j, _ in store.list_jobs()] == [new.id, mid.id, old.id]
    assert [j.id for j, _ in store.list_jobs(limit=2)] == [new.id, mid.id]
    assert [j.id for j, _ in store.list_jobs(limit=2, offset=1)] == [mid.id, old.id]
    assert [j.id for j, _ in store.list_jobs(status=JobStatus.PENDING)] == [mid.id, old.id]
    assert [j.id for j, _ in store.list_jobs(content_kind=ContentKind.VIDEO)] == [mid.id]


def test_delete_removes_results(store):
    job = store.create_job(_job())
    store.update_status(job.id, JobStatus.PROCESSING)
    store.append_result(job.id, _result(0))
    store.append_result(job.id, _result(1))

    store.delete_job(job.id)

    with pytest.raises(NotFoundError):
        store.get_job(job.id)
    if isinstance(store, SqlAlchemyJobStore):
        assert AnalysisResult.query.count() == 0


def test_list_stale_returns_only_old_unfinished_jobs(store):
    now = utcnow()
    stuck = store.create_job(_job(created_at=now - timedelta(hours=2)))
    running = store.create_job(_job(created_at=now - timedelta(hours=2)))
    store.update_status(running.id, JobStatus.PROCESSING)
    finished = store.create_job(_job(created_at=now - timedelta(hours=2)))
    store.update_status(finished.id, JobStatus.FAILED)
    store.create_job(_job(created_at=now))

    stale = store.list_stale(now - timedelta(hours=1))

    assert sorted(j.id for j in stale) == sorted([stuck.id, running.id])


def _db_down(*args, **kwargs):
    raise OperationalError("COMMIT", {}, Exception("server closed the connection unexpectedly"))


def test_sql_write_error_becomes_persistence_error_and_rolls_back(app, monkeypatch):
    store = SqlAlchemyJobStore(db)
    monkeypatch.setattr(db.session, "commit", _db_down)

    with pytest.raises(PersistenceError, match="server closed the connection"):
        store.create_job(_job())

    monkeypatch.undo()
    assert store.list_jobs() == []
    job = store.create_job(_job())
    assert store.get_job(job.id)[0].status is JobStatus.PENDING


def test_sql_read_error_becomes_persistence_error(app, monkeypatch):
    store = SqlAlchemyJobStore(db)
    job = store.create_job(_job())
    monkeypatch.setattr(db.session, "get", _db_down)

    with pytest.raises(PersistenceError):
        store.get_job(job.id)

    monkeypatch.undo()
    assert store.get_job(job.id)[0].id == job.id


def test_orchestrator_on_sql_store_retries_then_fails(app, monkeypatch, registry, scripted):
    real_commit = db.session.commit

    def commit():
        if any(isinstance(obj, AnalysisResult) for obj in db.session.new):
            raise OperationalError("INSERT INTO analysis_results", {}, Exception("disk I/O error"))
        real_commit()

    monkeypatch.setattr(db.session, "commit", commit)
    sleeps = []
    store = SqlAlchemyJobStore(db)
    orch = Orchestrator(store, registry, TaskRunner(scripted([True] * 4)), max_workers=1,
                        max_retries=2, backoff_seconds=0.1, sleep=sleeps.append)

    job_id = orch.start_analysis("abc.jpg", "image")

    job, results = store.get_job(job_id)
    assert job.status is JobStatus.FAILED
    assert job.completed_at is not None
    assert "could not record result" in job.error
    assert "disk I/O error" in job.error
    assert results == []
    assert sleeps == [0.1, 0.2]
