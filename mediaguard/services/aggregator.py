# mediaguard/services/aggregator.py
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Sequence

from mediaguard.services.analysis_types import (
    VERDICT_AUTHENTIC,
    VERDICT_FLAGGED,
    ContentKind,
    JobStatus,
    Snapshot,
    Summary,
    TaskResult,
)


def _mean_confidence(results: Sequence[TaskResult]) -> float:
    if not results:
        return 0.0
    avg = sum(float(r.confidence) for r in results) / len(results)
    return round(min(100.0, max(0.0, avg)), 2)


def overall_verdict(flagged_count: int, total: int) -> str:
    """Strict majority flags; exactly half stays authentic."""
    return VERDICT_FLAGGED if flagged_count > total / 2 else VERDICT_AUTHENTIC


def aggregate(results: Sequence[TaskResult]) -> Summary:
    total = len(results)
    flagged = sum(1 for r in results if r.is_flagged)
    return Summary(
        total_models=total,
        flagged_count=flagged,
        authentic_count=total - flagged,
        average_confidence=_mean_confidence(results),
        overall_verdict=overall_verdict(flagged, total),
    )


def collection_stats(snapshots: Iterable[Snapshot]) -> Dict[str, Any]:
    """
    Dashboard numbers over completed jobs: verdict split, mean confidence of
    every result, jobs per content kind and per-model flag rates.
    """
    completed = [s for s in snapshots if s.job.status is JobStatus.COMPLETED]
    all_results: List[TaskResult] = [r for s in completed for r in s.results]

    flagged_jobs = sum(1 for s in completed if aggregate(s.results).overall_verdict == VERDICT_FLAGGED)

    by_kind = {kind.value: 0 for kind in ContentKind}
    for s in completed:
        by_kind[s.job.content_kind.value] += 1

    per_model: "OrderedDict[str, Dict[str, int]]" = OrderedDict()
    for r in all_results:
        entry = per_model.setdefault(r.model_name, {"flagged": 0, "total": 0})
        entry["total"] += 1
        if r.is_flagged:
            entry["flagged"] += 1

    return {
        "totalAnalyses": len(completed),
        "flaggedAnalyses": flagged_jobs,
        "authenticAnalyses": len(completed) - flagged_jobs,
        "averageConfidence": _mean_confidence(all_results),
        "byKind": by_kind,
        "models": [{"name": name, **counts} for name, counts in per_model.items()],
    }
