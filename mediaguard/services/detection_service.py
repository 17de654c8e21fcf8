# mediaguard/services/detection_service.py
"""
Built-in detection units.

SimulatedDetector stands in for real models: random scores and an artificial
processing delay. RemoteDetector posts the content reference to an HTTP
detection service. `build_detection_unit` picks one per descriptor.
"""
import threading
import time
from typing import Any, Dict, Optional

import numpy as np
import requests

from mediaguard.services.analysis_types import (
    ContentKind,
    DetectionType,
    ModelDescriptor,
    TaskResult,
    utcnow,
)

ARTIFACTS = [
    "Inconsistent lighting patterns",
    "Unnatural facial symmetry",
    "Digital artifacts in high-frequency areas",
]
AUTHENTICITY_MARKERS = [
    "Natural noise patterns",
    "Consistent EXIF data",
    "Organic compression artifacts",
]


class SimulatedDetector:
    def __init__(self, seed: Optional[int] = None, latency_scale: float = 1.0, sleep=time.sleep):
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()  # Generator is not thread-safe
        self.latency_scale = latency_scale
        self._sleep = sleep

    def __call__(self, descriptor: ModelDescriptor, content_ref: str, content_kind: ContentKind) -> TaskResult:
        with self._lock:
            confidence = float(self._rng.uniform(60.0, 100.0))
            flagged = bool(self._rng.random() > 0.5)
            processing_ms = int(self._rng.uniform(500, 2500))
            n_items = int(self._rng.integers(1, 4))

        if flagged:
            detection_type = DetectionType.DEEPFAKE if descriptor.specialty == "deepfake" else DetectionType.SYNTHETIC
        else:
            detection_type = DetectionType.AUTHENTIC

        metadata: Dict[str, Any] = {
            "fileType": content_kind.value,
            "algorithmUsed": descriptor.specialty,
            "analysisTimestamp": utcnow().isoformat() + "Z",
        }
        if flagged:
            metadata["detectedArtifacts"] = ARTIFACTS[:n_items]
        else:
            metadata["authenticityMarkers"] = AUTHENTICITY_MARKERS[:n_items]

        if self.latency_scale > 0:
            self._sleep(processing_ms / 1000.0 * self.latency_scale)

        return TaskResult(
            model_name=descriptor.name,
            model_version=descriptor.version,
            is_flagged=flagged,
            confidence=round(confidence, 2),
            detection_type=detection_type,
            metadata=metadata,
            processing_ms=processing_ms,
        )


class RemoteDetector:
    """
    Calls `descriptor.endpoint` with
    {"contentRef", "contentKind", "model", "version"} and expects
    {"isFlagged", "confidence", "detectionType", "metadata"?} back.
    """

    def __init__(self, timeout: float = 20.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self._session = session or requests.Session()

    def __call__(self, descriptor: ModelDescriptor, content_ref: str, content_kind: ContentKind) -> TaskResult:
        if not descriptor.endpoint:
            raise RuntimeError(f"No endpoint configured for {descriptor.name}")

        payload = {
            "contentRef": content_ref,
            "contentKind": content_kind.value,
            "model": descriptor.name,
            "version": descriptor.version,
        }
        resp = self._session.post(descriptor.endpoint, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()

        if "isFlagged" not in data or "confidence" not in data:
            raise RuntimeError(f"Unexpected detection response: {data}")

        return TaskResult(
            model_name=descriptor.name,
            model_version=descriptor.version,
            is_flagged=bool(data["isFlagged"]),
            confidence=float(data["confidence"]),
            detection_type=DetectionType(data.get("detectionType") or DetectionType.UNCERTAIN.value),
            metadata=data.get("metadata") or {},
        )


def build_detection_unit(seed: Optional[int] = None, latency_scale: float = 1.0, remote_timeout: float = 20.0):
    simulated = SimulatedDetector(seed=seed, latency_scale=latency_scale)
    remote = RemoteDetector(timeout=remote_timeout)

    def detect(descriptor: ModelDescriptor, content_ref: str, content_kind: ContentKind) -> TaskResult:
        if descriptor.endpoint:
            return remote(descriptor, content_ref, content_kind)
        return simulated(descriptor, content_ref, content_kind)

    return detect
