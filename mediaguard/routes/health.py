# mediaguard/routes/health.py
from flask import Blueprint, current_app, jsonify

from mediaguard.services.orchestrator import get_orchestrator

bp = Blueprint("health", __name__)


@bp.get("/healthz")
def healthz():
    """
    Liveness plus the wiring the worker will use
    ---
    tags:
      - Health
    responses:
      200:
        description: OK
    """
    return jsonify({
        "ok": True,
        "jobStore": current_app.config.get("JOB_STORE", "sql"),
        "dispatch": current_app.config.get("ANALYSIS_DISPATCH", "celery"),
        "detectionUnits": len(get_orchestrator().registry),
    }), 200
