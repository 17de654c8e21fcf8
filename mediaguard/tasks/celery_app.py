# mediaguard/tasks/celery_app.py
# Worker entry point:
#   celery -A mediaguard.tasks.celery_app.celery worker -B
import os
import logging
from celery import Celery

logger = logging.getLogger(__name__)


def make_celery() -> Celery:
    """
    Base Celery instance: JSON only, UTC, and the beat entry that fails
    analysis jobs stuck past JOB_TIMEOUT_SECONDS.
    """
    celery_app = Celery("mediaguard")

    broker_url = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
    result_backend = os.getenv("CELERY_RESULT_BACKEND", broker_url)

    celery_app.conf.update(
        broker_url=broker_url,
        result_backend=result_backend,
        task_ignore_result=False,
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone=os.getenv("TZ", "UTC"),
        enable_utc=True,
        # a job is acknowledged only after execute() returned
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        beat_schedule={
            "reap-stale-analysis-jobs": {
                "task": "analysis.reap_stale",
                "schedule": float(os.getenv("REAP_INTERVAL_SECONDS", "60")),
            },
        },
    )
    logger.info(f"Celery configured with broker {broker_url}")
    return celery_app


celery = make_celery()


def _init_celery_with_flask():
    """Bind Celery to the Flask app so every task runs inside an app context."""
    from mediaguard import create_app
    config_name = os.getenv("FLASK_ENV", "development")
    flask_app = create_app(config_name)

    broker = flask_app.config.get("CELERY_BROKER_URL")
    backend = flask_app.config.get("CELERY_RESULT_BACKEND") or broker
    if broker:
        celery.conf.broker_url = broker
    if backend:
        celery.conf.result_backend = backend

    TaskBase = celery.Task

    class ContextTask(TaskBase):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return TaskBase.__call__(self, *args, **kwargs)

    celery.Task = ContextTask
    celery.set_default()

    with flask_app.app_context():
        from mediaguard.tasks import analysis_tasks  # noqa: F401  registers the tasks

    return flask_app


_flask_app = _init_celery_with_flask()
