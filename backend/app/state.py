from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    processing = "processing"
    completed = "completed"
    error = "error"


TERMINAL_STATUSES = frozenset([JobStatus.completed, JobStatus.error])


class JobKind(str, Enum):
    essay = "essay"
    search = "search"
    grades = "grades"


# Job id prefix per kind
ID_PREFIXES = {
    JobKind.essay: "job",
    JobKind.search: "search",
    JobKind.grades: "grades",
}


class Job(BaseModel):
    """Persisted job record; ``model_dump(exclude_none=True)`` is the stored layout."""

    id: str
    kind: JobKind = JobKind.essay
    status: JobStatus
    input: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    config: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    timestamp: int

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
