# mediaguard/models/job.py
from mediaguard.models import db
from mediaguard.models.result import AnalysisResult
from mediaguard.models.types import JSONBCompat
from mediaguard.services.analysis_types import ContentKind, Job, JobStatus, new_id, utcnow


class AnalysisJob(db.Model):
    __tablename__ = "analysis_jobs"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    content_ref = db.Column(db.Text, nullable=False)
    content_kind = db.Column(db.String(16), nullable=False)       # image|video|audio
    file_name = db.Column(db.String(255), nullable=True)
    file_size = db.Column(db.BigInteger, nullable=False, default=0)

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    error = db.Column(db.String(500), nullable=True)
    summary = db.Column(JSONBCompat(), nullable=True)              # set on completion
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    results = db.relationship(
        AnalysisResult,
        backref="job",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by=[AnalysisResult.created_at, AnalysisResult.position],
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_analysis_jobs_status",
        ),
        db.CheckConstraint(
            "content_kind IN ('image', 'video', 'audio')",
            name="ck_analysis_jobs_content_kind",
        ),
        db.CheckConstraint("file_size >= 0", name="ck_analysis_jobs_file_size"),
    )

    @classmethod
    def from_record(cls, job: Job) -> "AnalysisJob":
        return cls(
            id=job.id,
            content_ref=job.content_ref,
            content_kind=job.content_kind.value,
            file_name=job.file_name,
            file_size=job.file_size,
            status=job.status.value,
            error=job.error,
            summary=job.summary,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )

    def to_record(self) -> Job:
        return Job(
            id=self.id,
            content_ref=self.content_ref,
            content_kind=ContentKind(self.content_kind),
            status=JobStatus(self.status),
            created_at=self.created_at,
            completed_at=self.completed_at,
            file_name=self.file_name,
            file_size=self.file_size or 0,
            error=self.error,
            summary=self.summary,
        )
