from datetime import datetime, timezone

import pytest

from silencecut.domain.errors import (
    InsufficientCreditsError,
    InvalidJobStateError,
    JobNotFoundError,
    QueueConnectionError,
)
from silencecut.domain.models import Job, JobMessage, JobStatus
from silencecut.domain.services.job_service import JobService
from silencecut.infrastructure.queue.in_memory_queue import InMemoryJobQueue

INPUT_KEY = "videos/input/acct-1/job-1/talk.mp4"


@pytest.mark.anyio
async def test_submit_charges_a_credit_and_enqueues(job_service, repository, queue, account):
    await repository.save_account(account)

    job = await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", file_size=2048, job_id="job-1")

    assert job.status is JobStatus.QUEUED
    assert job.attempt == 1
    assert (await repository.get_account("acct-1")).credits == 0
    delivery = await queue.receive()
    assert delivery.job_id == "job-1"
    assert JobMessage.model_validate(delivery.payload).input_key == INPUT_KEY


@pytest.mark.anyio
async def test_submit_without_credits_is_refused(job_service, repository, queue, account):
    account.credits = 0
    await repository.save_account(account)

    with pytest.raises(InsufficientCreditsError):
        await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", job_id="job-1")

    assert await repository.get("job-1") is None
    assert queue.pending_count() == 0


@pytest.mark.anyio
async def test_submit_rejects_oversized_upload(job_service, repository, account):
    await repository.save_account(account)

    with pytest.raises(ValueError, match="300 MB"):
        await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", file_size=300 * 1024 * 1024 + 1)

    assert (await repository.get_account("acct-1")).credits == 1


@pytest.mark.anyio
async def test_duplicate_job_id_is_a_conflict(job_service, repository, account):
    account.credits = 2
    await repository.save_account(account)
    await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", job_id="job-1")

    with pytest.raises(InvalidJobStateError):
        await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", job_id="job-1")

    assert (await repository.get_account("acct-1")).credits == 1


@pytest.mark.anyio
async def test_get_job_hides_other_owners_jobs(job_service, repository, account):
    await repository.save_account(account)
    await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", job_id="job-1")

    assert (await job_service.get_job("job-1", "acct-1")).id == "job-1"
    with pytest.raises(JobNotFoundError):
        await job_service.get_job("job-1", "acct-2")
    with pytest.raises(JobNotFoundError):
        await job_service.get_job("missing")


@pytest.mark.anyio
async def test_list_jobs_is_newest_first(job_service, repository, account):
    account.credits = 3
    await repository.save_account(account)
    for minute, job_id in enumerate(("a", "b", "c")):
        created = datetime(2024, 5, 1, 12, minute, tzinfo=timezone.utc)
        await repository.create_job(Job(id=job_id, owner_id="acct-1", input_key=INPUT_KEY, original_filename="talk.mp4", created_at=created))

    jobs = await job_service.list_jobs("acct-1", limit=2)

    assert [j.id for j in jobs] == ["c", "b"]
    assert [j.id for j in await job_service.list_jobs("acct-1", limit=2, offset=2)] == ["a"]


@pytest.mark.anyio
async def test_download_url_only_for_completed_jobs(job_service, repository, account):
    await repository.save_account(account)
    job = await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", job_id="job-1")
    assert job_service.download_url_for(job) is None

    await repository.claim("job-1")
    await repository.mark_completed("job-1", "videos/output/acct-1/job-1/talk.mp4", 85)
    done = await repository.get("job-1")

    assert job_service.download_url_for(done) == "https://files.test/videos/output/acct-1/job-1/talk.mp4?expires=86400"


@pytest.mark.anyio
async def test_retry_resets_a_failed_job_and_charges_again(job_service, repository, queue, account):
    await repository.save_account(account)
    await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", job_id="job-1")
    delivery = await queue.receive()
    await repository.claim("job-1")
    await repository.mark_failed("job-1", "boom")
    await queue.ack(delivery)

    job = await job_service.retry_job("job-1", "acct-1")

    assert job.status is JobStatus.QUEUED
    assert job.attempt == 2
    assert job.error is None
    assert job.completed_at is None
    assert (await repository.get_account("acct-1")).credits == 0
    assert (await queue.receive()).job_id == "job-1"


@pytest.mark.anyio
async def test_running_or_completed_jobs_cannot_be_retried(job_service, repository, account):
    account.credits = 2
    await repository.save_account(account)
    await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", job_id="job-1")
    await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", job_id="job-2")
    await repository.claim("job-1")
    await repository.claim("job-2")
    await repository.mark_completed("job-2", "videos/output/acct-1/job-2/talk.mp4", 12)

    with pytest.raises(InvalidJobStateError):
        await job_service.retry_job("job-1")
    with pytest.raises(InvalidJobStateError):
        await job_service.retry_job("job-2")
    assert (await repository.get_account("acct-1")).credits == 0


@pytest.mark.anyio
async def test_retry_during_unacked_failure_keeps_the_new_message(job_service, repository, queue, account):
    await repository.save_account(account)
    await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", job_id="job-1")
    stale = await queue.receive()
    await repository.claim("job-1")
    await repository.mark_failed("job-1", "boom")

    await job_service.retry_job("job-1")
    await queue.ack(stale)

    assert queue.pending_count() == 1
    delivery = await queue.receive()
    assert delivery.job_id == "job-1"
    assert delivery.attempt == 1
    assert (await repository.get("job-1")).status is JobStatus.QUEUED
    assert (await repository.get_account("acct-1")).credits == 0


class DroppingQueue(InMemoryJobQueue):
    """Refuses the first enqueue as if the queue database were down."""

    def __init__(self):
        super().__init__()
        self.outages = 1

    async def enqueue(self, message, *, replace_leased=False):
        if self.outages:
            self.outages -= 1
            raise QueueConnectionError("could not connect to server")
        return await super().enqueue(message, replace_leased=replace_leased)


@pytest.mark.anyio
async def test_job_saved_without_a_message_can_be_requeued(repository, account):
    queue = DroppingQueue()
    job_service = JobService(repository, queue)
    await repository.save_account(account)

    with pytest.raises(QueueConnectionError):
        await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", job_id="job-1")
    assert (await repository.get("job-1")).status is JobStatus.QUEUED
    assert queue.pending_count() == 0

    job = await job_service.retry_job("job-1", "acct-1")
    again = await job_service.retry_job("job-1", "acct-1")

    assert job.status is JobStatus.QUEUED
    assert again.attempt == job.attempt == 1
    assert queue.pending_count() == 1
    assert (await repository.get_account("acct-1")).credits == 0


@pytest.mark.anyio
async def test_retry_without_credits_leaves_job_failed(job_service, repository, account):
    await repository.save_account(account)
    await job_service.submit_job("acct-1", INPUT_KEY, "talk.mp4", job_id="job-1")
    await repository.claim("job-1")
    await repository.mark_failed("job-1", "boom")
    account.credits = 0
    await repository.save_account(account)

    with pytest.raises(InsufficientCreditsError):
        await job_service.retry_job("job-1")

    assert (await repository.get("job-1")).status is JobStatus.FAILED
