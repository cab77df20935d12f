from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SilenceInterval:
    start: float
    end: float


@dataclass(frozen=True)
class Segment:
    """A non-silent [start, end) range of the source, in seconds."""

    start: float
    end: float

    @property
    def length(self) -> float:
        return self.end - self.start


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class Job:
    id: str
    owner_id: str
    input_key: str
    original_filename: str
    status: JobStatus = JobStatus.QUEUED
    file_size: Optional[int] = None
    output_key: Optional[str] = None
    duration: Optional[int] = None  # whole seconds
    error: Optional[str] = None
    attempt: int = 1
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


@dataclass
class Account:
    id: str
    email: Optional[str]
    display_name: Optional[str] = None
    credits: int = 0


class JobMessage(BaseModel):
    """
    Queue payload for one job. Validated at the queue boundary so malformed
    deliveries never reach the executor.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    job_id: str = Field(alias="jobId", min_length=1)
    owner_id: str = Field(alias="ownerId", min_length=1)
    input_key: str = Field(alias="inputKey", min_length=1)
    original_filename: str = Field(alias="originalFilename", min_length=1, max_length=255)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


class ExecutionOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"  # duplicate delivery for a terminal or unknown job
    RETRY = "retry"  # transient failure, leave the job for redelivery
