"""
Durable at-least-once job queue stored in the relational database.

A received message is leased for ``visibility_timeout_seconds``. If the
worker holding it dies, the lease lapses and another worker receives it
again with a higher attempt number. Each lease carries a fresh receipt, and
ack, retry and reject only act on the lease whose receipt they present.

Rows are keyed by job id, which makes enqueueing the same job twice a no-op
while a message is outstanding.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator, Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from silencecut.domain.errors import QueueConnectionError
from silencecut.domain.models import JobMessage, utcnow
from silencecut.domain.ports import Delivery
from silencecut.infrastructure.persistence.database import QueueMessageRow

logger = logging.getLogger(__name__)

PENDING = "pending"
LEASED = "leased"
DEAD = "dead"


@contextmanager
def _connection_errors() -> Iterator[None]:
    try:
        yield
    except IntegrityError:
        raise
    except (DBAPIError, OSError) as e:
        raise QueueConnectionError(f"Queue database unavailable: {e}") from e


class SqlJobQueue:
    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        visibility_timeout_seconds: float = 1800,
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory
        self._visibility_timeout = timedelta(seconds=visibility_timeout_seconds)

    async def enqueue(self, message: JobMessage, *, replace_leased: bool = False) -> bool:
        try:
            with _connection_errors():
                async with self._session_factory() as session, session.begin():
                    row = await session.get(QueueMessageRow, message.job_id, with_for_update=True)
                    if row is None:
                        session.add(
                            QueueMessageRow(
                                job_id=message.job_id,
                                payload=message.to_payload(),
                                status=PENDING,
                                attempts=0,
                                available_at=utcnow(),
                            )
                        )
                        return True
                    if row.status == PENDING or (row.status == LEASED and not replace_leased):
                        logger.info("Job %s already has an outstanding message; not enqueued again", message.job_id)
                        return False
                    row.payload = message.to_payload()
                    row.status = PENDING
                    row.attempts = 0
                    row.available_at = utcnow()
                    row.leased_until = None
                    row.last_error = None
                    row.receipt = None
                    return True
        except IntegrityError:
            return False

    async def receive(self) -> Optional[Delivery]:
        now = utcnow()
        stmt = (
            select(QueueMessageRow)
            .where(
                or_(
                    and_(QueueMessageRow.status == PENDING, QueueMessageRow.available_at <= now),
                    and_(QueueMessageRow.status == LEASED, QueueMessageRow.leased_until < now),
                )
            )
            .order_by(QueueMessageRow.available_at)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        with _connection_errors():
            async with self._session_factory() as session, session.begin():
                row = (await session.execute(stmt)).scalar_one_or_none()
                if row is None:
                    return None
                if row.status == LEASED:
                    logger.warning("Lease on job %s expired; redelivering", row.job_id)
                row.status = LEASED
                row.attempts += 1
                row.leased_until = now + self._visibility_timeout
                row.receipt = uuid.uuid4().hex
                return Delivery(
                    job_id=row.job_id,
                    payload=dict(row.payload or {}),
                    attempt=row.attempts,
                    receipt=row.receipt,
                )

    def _owned(self, delivery: Delivery):
        return and_(
            QueueMessageRow.job_id == delivery.job_id,
            QueueMessageRow.receipt == delivery.receipt,
            QueueMessageRow.status == LEASED,
        )

    async def ack(self, delivery: Delivery) -> None:
        with _connection_errors():
            async with self._session_factory() as session, session.begin():
                await session.execute(delete(QueueMessageRow).where(self._owned(delivery)))

    async def retry(self, delivery: Delivery, delay_seconds: float, reason: str) -> None:
        stmt = (
            update(QueueMessageRow)
            .where(self._owned(delivery))
            .values(
                status=PENDING,
                available_at=utcnow() + timedelta(seconds=delay_seconds),
                leased_until=None,
                last_error=reason,
            )
        )
        with _connection_errors():
            async with self._session_factory() as session, session.begin():
                await session.execute(stmt)

    async def reject(self, delivery: Delivery, reason: str) -> None:
        stmt = (
            update(QueueMessageRow)
            .where(self._owned(delivery))
            .values(status=DEAD, leased_until=None, last_error=reason)
        )
        with _connection_errors():
            async with self._session_factory() as session, session.begin():
                await session.execute(stmt)

    async def reconnect(self) -> None:
        # Drop pooled connections; the next checkout opens fresh ones
        await self._engine.dispose()
