import logging
import uuid
from typing import List, Optional

from silencecut.domain.errors import InvalidJobStateError, JobNotFoundError
from silencecut.domain.models import Job, JobMessage, JobStatus
from silencecut.domain.ports import JobQueue, JobRepository, ObjectStore

logger = logging.getLogger(__name__)


def message_for(job: Job) -> JobMessage:
    return JobMessage(
        job_id=job.id,
        owner_id=job.owner_id,
        input_key=job.input_key,
        original_filename=job.original_filename,
    )


class JobService:
    """
    Enqueueing side of the pipeline: create jobs, answer status queries and
    retry failed jobs. Credits are charged here; refunds happen in the executor.
    """

    def __init__(
        self,
        repository: JobRepository,
        queue: JobQueue,
        object_store: Optional[ObjectStore] = None,
        *,
        download_url_ttl_seconds: int = 86400,
        max_upload_bytes: int = 0,
    ) -> None:
        self._repository = repository
        self._queue = queue
        self._object_store = object_store
        self._download_url_ttl = download_url_ttl_seconds
        self._max_upload_bytes = max_upload_bytes

    async def submit_job(
        self,
        owner_id: str,
        input_key: str,
        original_filename: str,
        file_size: Optional[int] = None,
        job_id: Optional[str] = None,
    ) -> Job:
        """
        Create a queued job for an uploaded file, charging one credit, and
        enqueue it keyed by its job id.
        """
        if self._max_upload_bytes and file_size is not None and file_size > self._max_upload_bytes:
            raise ValueError(f"File size exceeds the maximum of {self._max_upload_bytes // (1024 * 1024)} MB")

        job = Job(
            id=job_id or str(uuid.uuid4()),
            owner_id=owner_id,
            input_key=input_key,
            original_filename=original_filename,
            file_size=file_size,
        )
        job = await self._repository.create_job(job)
        await self._queue.enqueue(message_for(job))
        logger.info("Job %s queued for %s (%s)", job.id, owner_id, input_key)
        return job

    async def get_job(self, job_id: str, owner_id: Optional[str] = None) -> Job:
        job = await self._repository.get(job_id)
        if job is None or (owner_id is not None and job.owner_id != owner_id):
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(self, owner_id: str, limit: int = 20, offset: int = 0) -> List[Job]:
        return await self._repository.list_for_owner(owner_id, limit=limit, offset=offset)

    def download_url_for(self, job: Job) -> Optional[str]:
        if job.status is not JobStatus.COMPLETED or not job.output_key or self._object_store is None:
            return None
        return self._object_store.presign_download(job.output_key, self._download_url_ttl)

    async def retry_job(self, job_id: str, owner_id: Optional[str] = None) -> Job:
        """
        Reset a failed job to queued (clearing error, output and completion
        time), charge a fresh credit and resubmit it with its original input.

        A job that is still queued is only re-enqueued, without a new charge.
        This recovers a job whose message never reached the queue.
        """
        job = await self.get_job(job_id, owner_id)
        if job.status is JobStatus.QUEUED:
            if await self._queue.enqueue(message_for(job)):
                logger.warning("Job %s was queued without a message; re-enqueued", job.id)
            return job
        if job.status is not JobStatus.FAILED:
            raise InvalidJobStateError("Only failed or queued jobs can be retried")

        job = await self._repository.requeue_failed(job_id)
        # The failed run's delivery may not be acked yet; take its place
        if not await self._queue.enqueue(message_for(job), replace_leased=True):
            logger.info("Job %s already has a pending message", job.id)
        logger.info("Job %s re-queued (attempt %d)", job.id, job.attempt)
        return job
