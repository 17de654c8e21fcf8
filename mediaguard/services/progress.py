# mediaguard/services/progress.py
from typing import Any, Dict, Iterator, List, Optional

from flask import current_app

from mediaguard.services.aggregator import collection_stats
from mediaguard.services.analysis_types import ContentKind, JobStatus, Snapshot
from mediaguard.services.job_store import JobStore


class ProgressReader:
    """Read-only views over the job store for polling clients."""

    def __init__(self, store: JobStore, page_size: int = 500):
        self.store = store
        self.page_size = max(1, page_size)

    def get_snapshot(self, job_id: str) -> Snapshot:
        job, results = self.store.get_job(job_id)
        return Snapshot(job=job, results=results)

    def history(self, limit: int = 50, status: Optional[JobStatus] = None,
                content_kind: Optional[ContentKind] = None) -> List[Snapshot]:
        rows = self.store.list_jobs(limit=limit, status=status, content_kind=content_kind)
        return [Snapshot(job=job, results=results) for job, results in rows]

    def _all_completed(self) -> Iterator[Snapshot]:
        seen = set()
        offset = 0
        while True:
            page = self.store.list_jobs(limit=self.page_size, status=JobStatus.COMPLETED, offset=offset)
            for job, results in page:
                # a job completed mid-scan shifts older rows onto the next page
                if job.id not in seen:
                    seen.add(job.id)
                    yield Snapshot(job=job, results=results)
            if len(page) < self.page_size:
                return
            offset += self.page_size

    def stats(self) -> Dict[str, Any]:
        return collection_stats(self._all_completed())


def get_progress_reader() -> ProgressReader:
    return current_app.extensions["mediaguard.progress"]
