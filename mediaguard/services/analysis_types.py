# mediaguard/services/analysis_types.py
"""
Plain records shared by the orchestrator, the job stores and the routes.

They are independent from the ORM so the in-memory store and the tests can
use them without a database.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

VERDICT_FLAGGED = "flagged"
VERDICT_AUTHENTIC = "authentic"


def utcnow() -> datetime:
    # Naive UTC, same as what the DateTime columns hold.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.replace(microsecond=0).isoformat() + "Z" if dt else None


class ContentKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class DetectionType(str, Enum):
    DEEPFAKE = "deepfake"
    SYNTHETIC = "synthetic"
    AUTHENTIC = "authentic"
    UNCERTAIN = "uncertain"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# pending may go straight to failed when execution never got started
_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    return new in _TRANSITIONS[current]


@dataclass(frozen=True)
class ModelDescriptor:
    name: str
    version: str
    specialty: str
    endpoint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"name": self.name, "version": self.version, "specialty": self.specialty}
        if self.endpoint:
            data["endpoint"] = self.endpoint
        return data


@dataclass
class Job:
    id: str
    content_ref: str
    content_kind: ContentKind
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    file_name: Optional[str] = None
    file_size: int = 0
    error: Optional[str] = None
    summary: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "contentRef": self.content_ref,
            "contentKind": self.content_kind.value,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "status": self.status.value,
            "createdAt": iso(self.created_at),
        }
        if self.completed_at:
            data["completedAt"] = iso(self.completed_at)
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class TaskResult:
    model_name: str
    model_version: str
    is_flagged: bool
    confidence: float
    detection_type: DetectionType
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    job_id: Optional[str] = None
    position: Optional[int] = None
    processing_ms: int = 0
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "modelName": self.model_name,
            "modelVersion": self.model_version,
            "isFlagged": self.is_flagged,
            "confidence": self.confidence,
            "detectionType": self.detection_type.value,
            "metadata": self.metadata,
            "processingMs": self.processing_ms,
            "createdAt": iso(self.created_at),
        }


@dataclass(frozen=True)
class Summary:
    total_models: int
    flagged_count: int
    authentic_count: int
    average_confidence: float
    overall_verdict: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalModels": self.total_models,
            "flaggedCount": self.flagged_count,
            "authenticCount": self.authentic_count,
            "averageConfidence": self.average_confidence,
            "overallVerdict": self.overall_verdict,
        }


@dataclass
class Snapshot:
    job: Job
    results: List[TaskResult]

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "job": self.job.to_dict(),
            "results": [r.to_dict() for r in self.results],
        }
        if self.job.status is JobStatus.COMPLETED and self.job.summary is not None:
            data["summary"] = self.job.summary
        return data
