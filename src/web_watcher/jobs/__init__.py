"""Job records: typed models, validation, and on-disk contracts."""

from web_watcher.jobs.models import Job, JobOperation, JobResult, WaitUntil
from web_watcher.jobs.validator import normalize

__all__ = [
    "Job",
    "JobOperation",
    "JobResult",
    "WaitUntil",
    "normalize",
]
