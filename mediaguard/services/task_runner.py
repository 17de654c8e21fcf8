# mediaguard/services/task_runner.py
import logging
import math
import time
from dataclasses import replace
from typing import Callable, Union

from mediaguard.errors import TaskExecutionError
from mediaguard.services.analysis_types import (
    ContentKind,
    DetectionType,
    ModelDescriptor,
    TaskResult,
    utcnow,
)

logger = logging.getLogger(__name__)

DetectionUnit = Callable[[ModelDescriptor, str, ContentKind], TaskResult]


class TaskRunner:
    """
    Runs one detection unit against one content item.

    The unit is any callable (descriptor, content_ref, content_kind) -> TaskResult.
    Whatever it raises comes back as TaskExecutionError, and results outside
    the accepted bounds are rejected the same way. The runner never touches
    job state.
    """

    def __init__(self, detect: DetectionUnit):
        self._detect = detect

    def run(self, descriptor: ModelDescriptor, content_ref: str,
            content_kind: Union[ContentKind, str]) -> TaskResult:
        kind = ContentKind(content_kind)
        started = time.monotonic()
        try:
            result = self._detect(descriptor, content_ref, kind)
        except TaskExecutionError:
            raise
        except Exception as e:
            raise TaskExecutionError(descriptor.name, str(e) or type(e).__name__) from e
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if not isinstance(result, TaskResult):
            raise TaskExecutionError(descriptor.name, f"unit returned {type(result).__name__}")
        try:
            confidence = float(result.confidence)
            detection_type = DetectionType(result.detection_type)
        except (TypeError, ValueError) as e:
            raise TaskExecutionError(descriptor.name, f"malformed result: {e}") from e
        if math.isnan(confidence) or not 0.0 <= confidence <= 100.0:
            raise TaskExecutionError(descriptor.name, f"confidence {confidence} outside [0, 100]")

        return replace(
            result,
            model_name=descriptor.name,
            model_version=descriptor.version,
            is_flagged=bool(result.is_flagged),
            confidence=round(confidence, 2),
            detection_type=detection_type,
            metadata=dict(result.metadata or {}),
            processing_ms=result.processing_ms or elapsed_ms,
            created_at=utcnow(),
        )
