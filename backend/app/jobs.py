import logging
import time
import uuid
from typing import Any, Dict, Optional, Union

from .state import ID_PREFIXES, Job, JobKind, JobStatus
from .storage import BlobStore, get_blob_store

logger = logging.getLogger(__name__)


class JobStateError(Exception):
    """Raised when a terminal transition is attempted on a finished job."""


def now_ms() -> int:
    return int(time.time() * 1000)


def new_job_id(kind: JobKind = JobKind.essay) -> str:
    # uuid4 is collision resistant; the store is not consulted.
    return f"{ID_PREFIXES[kind]}_{uuid.uuid4().hex}"


def _error_detail(error: Union[str, Dict[str, Any], Exception]) -> Dict[str, Any]:
    if isinstance(error, dict):
        detail = dict(error)
        detail.setdefault("message", "Job failed")
        return detail
    return {"message": str(error)}


class JobStore:
    """Job lifecycle on top of a blob store: processing -> completed | error."""

    def __init__(self, store: BlobStore):
        self.store = store

    def create_job(self, input: Dict[str, Any], kind: JobKind = JobKind.essay) -> str:
        job_id = new_job_id(kind)
        job = Job(
            id=job_id,
            kind=kind,
            status=JobStatus.processing,
            input=input,
            timestamp=now_ms(),
        )
        self.store.set_json(job_id, job.to_record())
        logger.info("Created %s job %s", kind.value, job_id)
        return job_id

    def get_record(self, job_id: str) -> Optional[Dict[str, Any]]:
        """The stored JSON exactly as written, or None."""
        return self.store.get_json(job_id)

    def get_job(self, job_id: str) -> Optional[Job]:
        """Return the job, or None when no record exists (yet).

        StoreError from the underlying store propagates unchanged.
        """
        record = self.store.get_json(job_id)
        if record is None:
            return None
        record.setdefault("id", job_id)
        return Job.model_validate(record)

    def complete_job(
        self,
        job_id: str,
        result: Optional[Dict[str, Any]] = None,
        config: Optional[str] = None,
        loaded: Optional[Job] = None,
    ) -> Job:
        job = self._pending(job_id, loaded)
        job.status = JobStatus.completed
        job.result = result
        job.config = config
        job.timestamp = now_ms()
        self.store.set_json(job_id, job.to_record())
        logger.info("Job %s completed", job_id)
        return job

    def fail_job(
        self,
        job_id: str,
        error: Union[str, Dict[str, Any], Exception],
        loaded: Optional[Job] = None,
    ) -> Job:
        job = self._pending(job_id, loaded)
        job.status = JobStatus.error
        job.error = _error_detail(error)
        job.timestamp = now_ms()
        self.store.set_json(job_id, job.to_record())
        logger.info("Job %s failed: %s", job_id, job.error.get("message"))
        return job

    def _pending(self, job_id: str, loaded: Optional[Job] = None) -> Job:
        """The job to finish, re-read so a finished record is never overwritten.

        When the re-read misses, ``loaded`` (the copy the caller already holds)
        supplies ``kind`` and ``input``; only without it is a bare record written.
        """
        job = self.get_job(job_id)
        if job is None:
            logger.warning("Job %s not found at terminal write", job_id)
            if loaded is not None:
                if loaded.is_terminal:
                    raise JobStateError(f"Job {job_id} is already {loaded.status.value}")
                return loaded.model_copy(deep=True)
            return Job(id=job_id, status=JobStatus.processing, timestamp=now_ms())
        if job.is_terminal:
            raise JobStateError(f"Job {job_id} is already {job.status.value}")
        return job


def get_job_store() -> JobStore:
    return JobStore(get_blob_store())
