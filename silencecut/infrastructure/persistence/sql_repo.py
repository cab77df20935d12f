"""Relational job store using SQLAlchemy's async ORM."""
import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from silencecut.domain.errors import InsufficientCreditsError, InvalidJobStateError, JobNotFoundError
from silencecut.domain.models import Account, Job, JobStatus, utcnow
from silencecut.infrastructure.persistence.database import AccountRow, CreditRefundRow, JobRow

logger = logging.getLogger(__name__)


def _to_job(row: JobRow) -> Job:
    return Job(
        id=row.id,
        owner_id=row.owner_id,
        input_key=row.input_key,
        original_filename=row.original_filename,
        status=JobStatus(row.status),
        file_size=row.file_size,
        output_key=row.output_key,
        duration=row.duration,
        error=row.error,
        attempt=row.attempt,
        created_at=row.created_at,
        completed_at=row.completed_at,
    )


class SqlJobRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _charge(self, session: AsyncSession, owner_id: str) -> None:
        account = await session.get(AccountRow, owner_id, with_for_update=True)
        if account is None or account.credits <= 0:
            raise InsufficientCreditsError(f"Account {owner_id} has no credits left")
        account.credits -= 1

    async def save_account(self, account: Account) -> None:
        async with self._session_factory() as session, session.begin():
            await session.merge(
                AccountRow(
                    id=account.id,
                    email=account.email,
                    display_name=account.display_name,
                    credits=account.credits,
                )
            )

    async def get_account(self, owner_id: str) -> Optional[Account]:
        async with self._session_factory() as session:
            row = await session.get(AccountRow, owner_id)
            if row is None:
                return None
            return Account(id=row.id, email=row.email, display_name=row.display_name, credits=row.credits)

    async def create_job(self, job: Job) -> Job:
        try:
            async with self._session_factory() as session, session.begin():
                await self._charge(session, job.owner_id)
                row = JobRow(
                    id=job.id,
                    owner_id=job.owner_id,
                    status=JobStatus.QUEUED.value,
                    input_key=job.input_key,
                    original_filename=job.original_filename,
                    file_size=job.file_size,
                    attempt=job.attempt,
                    created_at=job.created_at,
                )
                session.add(row)
        except IntegrityError as e:
            raise InvalidJobStateError(f"Job {job.id} already exists") from e
        return _to_job(row)

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._session_factory() as session:
            row = await session.get(JobRow, job_id)
            return _to_job(row) if row else None

    async def list_for_owner(self, owner_id: str, limit: int = 20, offset: int = 0) -> List[Job]:
        stmt = (
            select(JobRow)
            .where(JobRow.owner_id == owner_id)
            .order_by(JobRow.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_job(r) for r in rows]

    async def claim(self, job_id: str) -> Optional[Job]:
        async with self._session_factory() as session, session.begin():
            row = await session.get(JobRow, job_id, with_for_update=True)
            if row is None or JobStatus(row.status).is_terminal:
                return None
            row.status = JobStatus.PROCESSING.value
            return _to_job(row)

    async def _transition_from_processing(self, job_id: str, **values) -> bool:
        stmt = (
            update(JobRow)
            .where(JobRow.id == job_id, JobRow.status == JobStatus.PROCESSING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def mark_completed(self, job_id: str, output_key: str, duration: Optional[int]) -> bool:
        return await self._transition_from_processing(
            job_id,
            status=JobStatus.COMPLETED.value,
            output_key=output_key,
            duration=duration,
            error=None,
            completed_at=utcnow(),
        )

    async def mark_failed(self, job_id: str, error: str) -> bool:
        """
        Fail a processing job and refund its owner in the same transaction, so
        a failed job is never left without its refund. Refunds are keyed by
        (job, attempt); a retried job that fails again is refunded again.
        """
        async with self._session_factory() as session, session.begin():
            row = await session.get(JobRow, job_id, with_for_update=True)
            if row is None or row.status != JobStatus.PROCESSING.value:
                return False
            row.status = JobStatus.FAILED.value
            row.output_key = None
            row.error = error
            row.completed_at = utcnow()

            if await session.get(CreditRefundRow, (row.id, row.attempt)) is not None:
                logger.info("Job %s attempt %d was already refunded", row.id, row.attempt)
                return True
            if await session.get(AccountRow, row.owner_id) is None:
                logger.warning("Refund skipped for job %s: account %s not found", row.id, row.owner_id)
                return True
            session.add(CreditRefundRow(job_id=row.id, attempt=row.attempt, owner_id=row.owner_id))
            await session.execute(
                update(AccountRow)
                .where(AccountRow.id == row.owner_id)
                .values(credits=AccountRow.credits + 1)
                .execution_options(synchronize_session=False)
            )
            logger.info("Refunded 1 credit to %s for job %s", row.owner_id, row.id)
            return True

    async def requeue_failed(self, job_id: str) -> Job:
        async with self._session_factory() as session, session.begin():
            row = await session.get(JobRow, job_id, with_for_update=True)
            if row is None:
                raise JobNotFoundError(job_id)
            if row.status != JobStatus.FAILED.value:
                raise InvalidJobStateError("Only failed jobs can be retried")
            await self._charge(session, row.owner_id)
            row.status = JobStatus.QUEUED.value
            row.error = None
            row.output_key = None
            row.completed_at = None
            row.attempt += 1
            return _to_job(row)

