from dataclasses import replace
from threading import Lock
from typing import Dict, List, Optional, Set, Tuple

from silencecut.domain.errors import InsufficientCreditsError, InvalidJobStateError, JobNotFoundError
from silencecut.domain.models import Account, Job, JobStatus, utcnow


class InMemoryJobRepository:
    """
    Very simple in-memory repository for demo / local development and tests.

    The production store is ``SqlJobRepository``; both honour the same
    single-writer, conditional-update semantics.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._accounts: Dict[str, Account] = {}
        self._refunds: Set[Tuple[str, int]] = set()
        self._lock = Lock()

    async def save_account(self, account: Account) -> None:
        with self._lock:
            self._accounts[account.id] = replace(account)

    async def get_account(self, owner_id: str) -> Optional[Account]:
        with self._lock:
            account = self._accounts.get(owner_id)
            return replace(account) if account else None

    def _charge(self, owner_id: str) -> None:
        account = self._accounts.get(owner_id)
        if account is None or account.credits <= 0:
            raise InsufficientCreditsError(f"Account {owner_id} has no credits left")
        account.credits -= 1

    def _refund(self, job: Job) -> None:
        key = (job.id, job.attempt)
        account = self._accounts.get(job.owner_id)
        if key in self._refunds or account is None:
            return
        self._refunds.add(key)
        account.credits += 1

    async def create_job(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise InvalidJobStateError(f"Job {job.id} already exists")
            self._charge(job.owner_id)
            self._jobs[job.id] = replace(job, status=JobStatus.QUEUED)
            return replace(self._jobs[job.id])

    async def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    async def list_for_owner(self, owner_id: str, limit: int = 20, offset: int = 0) -> List[Job]:
        with self._lock:
            jobs = [j for j in self._jobs.values() if j.owner_id == owner_id]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [replace(j) for j in jobs[offset : offset + limit]]

    async def claim(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.is_terminal:
                return None
            job.status = JobStatus.PROCESSING
            return replace(job)

    async def mark_completed(self, job_id: str, output_key: str, duration: Optional[int]) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.PROCESSING:
                return False
            job.status = JobStatus.COMPLETED
            job.output_key = output_key
            job.duration = duration
            job.error = None
            job.completed_at = utcnow()
            return True

    async def mark_failed(self, job_id: str, error: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.PROCESSING:
                return False
            job.status = JobStatus.FAILED
            job.error = error
            job.output_key = None
            job.completed_at = utcnow()
            self._refund(job)
            return True

    async def requeue_failed(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status is not JobStatus.FAILED:
                raise InvalidJobStateError("Only failed jobs can be retried")
            self._charge(job.owner_id)
            job.status = JobStatus.QUEUED
            job.error = None
            job.output_key = None
            job.completed_at = None
            job.attempt += 1
            return replace(job)

