# mediaguard/routes/analysis_routes.py
from flask import Blueprint, jsonify, request

from mediaguard.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from mediaguard.services.analysis_types import ContentKind, JobStatus
from mediaguard.services.orchestrator import get_orchestrator
from mediaguard.services.progress import get_progress_reader

bp = Blueprint("analysis", __name__)  # prefix is applied in create_app


# --- Error mapping ---

@bp.errorhandler(ValidationError)
def _validation_error(e):
    return jsonify({"ok": False, "error": str(e)}), 400


@bp.errorhandler(NotFoundError)
def _not_found(e):
    return jsonify({"ok": False, "error": "job not found", "jobId": e.job_id}), 404


@bp.errorhandler(InvalidTransitionError)
def _conflict(e):
    return jsonify({"ok": False, "error": str(e)}), 409


@bp.errorhandler(PersistenceError)
def _store_unavailable(e):
    return jsonify({"ok": False, "error": "job store unavailable", "detail": str(e)}), 503


def _enum_arg(name, enum_cls):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid '{name}': {raw}")


# --- Routes ---

@bp.post("/start")
def start():
    """
    Analysis: start a job
    ---
    tags:
      - Analysis
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - contentRef
            - contentKind
          properties:
            contentRef:
              type: string
              description: Locator of the uploaded item.
              example: "uploads/abc.jpg"
            contentKind:
              type: string
              enum: [image, video, audio]
              example: "image"
            fileName:
              type: string
              example: "abc.jpg"
            fileSize:
              type: integer
              description: Size in bytes.
              example: 204800
    responses:
      200:
        description: Job created; poll GET /api/analysis/{jobId}
      400:
        description: Missing or invalid fields
      503:
        description: Job store unavailable
    """
    data = request.get_json(silent=True) or {}
    job_id = get_orchestrator().start_analysis(
        data.get("contentRef"),
        data.get("contentKind"),
        file_name=data.get("fileName"),
        file_size=data.get("fileSize"),
    )
    return jsonify({"ok": True, "jobId": job_id}), 200


@bp.get("/<job_id>")
def snapshot(job_id: str):
    """
    Analysis: current state of a job
    Results appear one by one while the job is processing; the summary is
    attached once it is completed.
    ---
    tags:
      - Analysis
    parameters:
      - in: path
        name: job_id
        required: true
        type: string
    responses:
      200:
        description: OK
      404:
        description: Unknown job
    """
    snap = get_progress_reader().get_snapshot(job_id)
    return jsonify({"ok": True, **snap.to_dict()}), 200


@bp.delete("/<job_id>")
def delete(job_id: str):
    """
    Analysis: delete a job and its results
    ---
    tags:
      - Analysis
    parameters:
      - in: path
        name: job_id
        required: true
        type: string
    responses:
      200:
        description: Deleted
      404:
        description: Unknown job
    """
    get_orchestrator().store.delete_job(job_id)
    return jsonify({"ok": True, "jobId": job_id}), 200


@bp.get("/")
def history():
    """
    Analysis: latest 50 jobs with their results
    ---
    tags:
      - Analysis
    parameters:
      - in: query
        name: status
        required: false
        type: string
        enum: [pending, processing, completed, failed]
      - in: query
        name: contentKind
        required: false
        type: string
        enum: [image, video, audio]
    responses:
      200:
        description: OK
      400:
        description: Invalid filter
    """
    snaps = get_progress_reader().history(
        limit=50,
        status=_enum_arg("status", JobStatus),
        content_kind=_enum_arg("contentKind", ContentKind),
    )
    return jsonify({"ok": True, "items": [s.to_dict() for s in snaps]}), 200


@bp.get("/stats")
def stats():
    """
    Analysis: statistics over completed jobs
    ---
    tags:
      - Analysis
    responses:
      200:
        description: OK
    """
    return jsonify({"ok": True, **get_progress_reader().stats()}), 200


@bp.get("/models")
def models():
    """
    Analysis: configured detection units, in execution order
    ---
    tags:
      - Analysis
    responses:
      200:
        description: OK
    """
    return jsonify({"ok": True, "models": [d.to_dict() for d in get_orchestrator().registry]}), 200
