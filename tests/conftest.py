import os
import pytest

from mediaguard import create_app
from mediaguard.models import db as _db, AnalysisJob, AnalysisResult
from mediaguard.services.analysis_types import DetectionType, ModelDescriptor, TaskResult

REGISTRY = tuple(
    ModelDescriptor(name=f"unit-{i}", version="v1", specialty="deepfake" if i == 0 else "synthetic")
    for i in range(4)
)


@pytest.fixture(scope="session")
def app():
    os.environ["FLASK_ENV"] = "testing"
    app = create_app("testing")
    with app.app_context():
        _db.create_all()
        yield app
        _db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def _clean_tables(request):
    yield
    if "app" in request.fixturenames:
        _db.session.rollback()
        AnalysisResult.query.delete()
        AnalysisJob.query.delete()
        _db.session.commit()


@pytest.fixture()
def registry():
    return REGISTRY


def scripted_unit(flags, fail_on=None):
    """Deterministic detection unit: unit-i is flagged iff flags[i]."""
    def detect(descriptor, content_ref, content_kind):
        if descriptor.name == fail_on:
            raise RuntimeError("unit unreachable")
        flagged = flags[int(descriptor.name.split("-")[1])]
        return TaskResult(
            model_name=descriptor.name,
            model_version=descriptor.version,
            is_flagged=flagged,
            confidence=90.0 if flagged else 70.0,
            detection_type=DetectionType.DEEPFAKE if flagged else DetectionType.AUTHENTIC,
            metadata={"fileType": content_kind.value},
        )
    return detect


@pytest.fixture()
def scripted():
    return scripted_unit
