from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from silencecut.domain.models import Job, JobStatus


class JobDetail(BaseModel):
    id: str
    owner_id: str
    status: JobStatus
    original_filename: str
    file_size: Optional[int] = None
    duration: Optional[int] = None
    error: Optional[str] = None
    attempt: int = 1
    created_at: datetime
    completed_at: Optional[datetime] = None
    download_url: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job, download_url: Optional[str] = None) -> "JobDetail":
        return cls(
            id=job.id,
            owner_id=job.owner_id,
            status=job.status,
            original_filename=job.original_filename,
            file_size=job.file_size,
            duration=job.duration,
            error=job.error,
            attempt=job.attempt,
            created_at=job.created_at,
            completed_at=job.completed_at,
            download_url=download_url,
        )


class JobSubmitRequest(BaseModel):
    owner_id: str = Field(min_length=1)
    input_key: str = Field(min_length=1)
    original_filename: str = Field(min_length=1, max_length=255)
    file_size: Optional[int] = Field(default=None, ge=1)
    job_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
