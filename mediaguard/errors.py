# mediaguard/errors.py


class AnalysisError(Exception):
    """Base class for every error raised by the analysis core."""


class ValidationError(AnalysisError):
    """Submission rejected before any job was created."""


class NotFoundError(AnalysisError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"job {job_id} not found")


class TaskExecutionError(AnalysisError):
    """A single detection unit could not produce a result."""

    def __init__(self, model_name: str, message: str):
        self.model_name = model_name
        super().__init__(f"{model_name}: {message}")


class PersistenceError(AnalysisError):
    """The job store could not durably record a change."""


class InvalidTransitionError(AnalysisError):
    """
    A write that would break the job lifecycle: moving status backwards,
    touching a terminal job, or recording a second result for the same
    registry entry.
    """
