# mediaguard/models/result.py
from mediaguard.models import db
from mediaguard.models.types import JSONBCompat
from mediaguard.services.analysis_types import DetectionType, TaskResult, new_id, utcnow


class AnalysisResult(db.Model):
    """One detection unit's verdict for one job. Never updated once written."""

    __tablename__ = "analysis_results"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    job_id = db.Column(
        db.String(36),
        db.ForeignKey("analysis_jobs.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    position = db.Column(db.Integer, nullable=False)          # index in the model registry
    model_name = db.Column(db.String(120), nullable=False)
    model_version = db.Column(db.String(32), nullable=False, default="v1")
    is_flagged = db.Column(db.Boolean, nullable=False)
    confidence = db.Column(db.Numeric(5, 2), nullable=False)  # 0..100
    detection_type = db.Column(db.String(20), nullable=False)
    evidence = db.Column("metadata", JSONBCompat(), nullable=False, default=dict)
    processing_ms = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("job_id", "position", name="uq_analysis_results_job_position"),
        db.CheckConstraint(
            "confidence >= 0 AND confidence <= 100", name="ck_analysis_results_confidence"
        ),
        db.CheckConstraint(
            "detection_type IN ('deepfake', 'synthetic', 'authentic', 'uncertain')",
            name="ck_analysis_results_detection_type",
        ),
    )

    @classmethod
    def from_record(cls, job_id: str, result: TaskResult) -> "AnalysisResult":
        return cls(
            id=result.id,
            job_id=job_id,
            position=result.position,
            model_name=result.model_name,
            model_version=result.model_version,
            is_flagged=result.is_flagged,
            confidence=round(result.confidence, 2),
            detection_type=result.detection_type.value,
            evidence=dict(result.metadata),
            processing_ms=result.processing_ms,
            created_at=result.created_at,
        )

    def to_record(self) -> TaskResult:
        return TaskResult(
            id=self.id,
            job_id=self.job_id,
            position=self.position,
            model_name=self.model_name,
            model_version=self.model_version,
            is_flagged=bool(self.is_flagged),
            confidence=float(self.confidence),
            detection_type=DetectionType(self.detection_type),
            metadata=dict(self.evidence or {}),
            processing_ms=self.processing_ms or 0,
            created_at=self.created_at,
        )
