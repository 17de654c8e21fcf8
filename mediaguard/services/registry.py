# mediaguard/services/registry.py
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Tuple

from mediaguard.services.analysis_types import ModelDescriptor

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = (
    ModelDescriptor(name="DeepFake Detector Pro", version="v2.1", specialty="deepfake"),
    ModelDescriptor(name="SynthImage Analyzer", version="v1.8", specialty="synthetic"),
    ModelDescriptor(name="MediaAuth Validator", version="v3.0", specialty="authentic"),
    ModelDescriptor(name="Neural Pattern Recognition", version="v2.5", specialty="synthetic"),
)


def _descriptor(entry: Mapping[str, Any]) -> ModelDescriptor:
    name = str(entry.get("name") or "").strip()
    version = str(entry.get("version") or "").strip()
    if not name or not version:
        raise ValueError(f"Registry entry needs 'name' and 'version': {dict(entry)}")
    return ModelDescriptor(
        name=name,
        version=version,
        specialty=str(entry.get("specialty") or "generic").strip().lower(),
        endpoint=(entry.get("endpoint") or None),
    )


def build_registry(entries: Iterable[Mapping[str, Any]]) -> Tuple[ModelDescriptor, ...]:
    registry = tuple(_descriptor(e) for e in entries)
    if not registry:
        raise ValueError("Model registry is empty")
    names = [d.name for d in registry]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate model names in registry: {names}")
    return registry


def load_registry(path: Optional[str] = None) -> Tuple[ModelDescriptor, ...]:
    """
    Registry from a JSON file (a list of {name, version, specialty, endpoint?})
    or the built-in default when no path is given.
    """
    if not path:
        return DEFAULT_REGISTRY
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Model registry not found: {path}")
    data = json.loads(p.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("models", [])
    registry = build_registry(data)
    logger.info(f"Loaded {len(registry)} detection units from {path}")
    return registry
