# mediaguard/tasks/analysis_tasks.py
from celery import shared_task
from flask import current_app

from mediaguard.services.orchestrator import get_orchestrator


@shared_task(name="analysis.run")
def run_analysis(job_id: str):
    """Drive one job to a terminal status. The outcome lives in the job store."""
    status = get_orchestrator().execute(job_id)
    return {"job_id": job_id, "status": status.value if status else None}


@shared_task(name="analysis.reap_stale")
def reap_stale_jobs():
    timeout = current_app.config.get("JOB_TIMEOUT_SECONDS", 600)
    reaped = get_orchestrator().reap_stale(timeout)
    return {"reaped": reaped, "count": len(reaped)}
