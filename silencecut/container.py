"""
Wiring: build the concrete collaborators from settings and hand them to the
services explicitly.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from silencecut.config import Settings
from silencecut.domain.ports import SilenceDetector
from silencecut.domain.services.job_executor import JobExecutor
from silencecut.domain.services.job_service import JobService
from silencecut.domain.services.queue_consumer import QueueConsumer
from silencecut.infrastructure.ffmpeg_adapter import FfmpegProber, FfmpegSilenceDetector
from silencecut.infrastructure.librosa_detector import LibrosaSilenceDetector
from silencecut.infrastructure.notifications import NotificationSender, NullNotificationSender, ResendEmailSender
from silencecut.infrastructure.object_store import S3ObjectStore
from silencecut.infrastructure.persistence.database import build_engine, build_session_factory, create_schema
from silencecut.infrastructure.persistence.sql_repo import SqlJobRepository
from silencecut.infrastructure.queue.sql_queue import SqlJobQueue
from silencecut.infrastructure.segment_assembler import SegmentAssembler

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # boto3 is chatty at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)


def build_detector(settings: Settings) -> SilenceDetector:
    if settings.silence_detector == "librosa":
        return LibrosaSilenceDetector()
    return FfmpegSilenceDetector()


def build_notifier(settings: Settings) -> NotificationSender:
    if settings.notifications_enabled:
        return ResendEmailSender(settings.resend_api_key, settings.email_from)
    return NullNotificationSender()


@dataclass
class Container:
    settings: Settings
    engine: AsyncEngine
    repository: SqlJobRepository
    queue: SqlJobQueue
    object_store: S3ObjectStore
    job_service: JobService
    executor: JobExecutor

    def build_consumer(self) -> QueueConsumer:
        s = self.settings
        return QueueConsumer(
            self.queue,
            self.executor,
            concurrency=s.worker_concurrency,
            rate_limit_max=s.rate_limit_max,
            rate_limit_window_seconds=s.rate_limit_window_seconds,
            max_attempts=s.max_attempts,
            retry_backoff_seconds=s.retry_backoff_seconds,
            poll_interval_seconds=s.poll_interval_seconds,
            reconnect_backoff_max_seconds=s.reconnect_backoff_max_seconds,
            shutdown_grace_seconds=s.shutdown_grace_seconds,
        )

    async def start(self) -> None:
        await create_schema(self.engine)

    async def close(self) -> None:
        await self.engine.dispose()


def build_container(settings: Settings) -> Container:
    engine = build_engine(settings.database_url)
    session_factory = build_session_factory(engine)
    repository = SqlJobRepository(session_factory)
    queue = SqlJobQueue(engine, session_factory, visibility_timeout_seconds=settings.visibility_timeout_seconds)
    object_store = S3ObjectStore(
        settings.s3_bucket,
        endpoint_url=settings.s3_endpoint_url,
        region=settings.s3_region,
    )
    executor = JobExecutor(
        repository=repository,
        object_store=object_store,
        prober=FfmpegProber(),
        detector=build_detector(settings),
        assembler=SegmentAssembler(),
        notifier=build_notifier(settings),
        scratch_root=settings.scratch_dir,
        noise_floor_db=settings.noise_floor_db,
        min_silence_seconds=settings.min_silence_seconds,
        download_url_ttl_seconds=settings.download_url_ttl_seconds,
        app_url=settings.app_url,
    )
    job_service = JobService(
        repository,
        queue,
        object_store,
        download_url_ttl_seconds=settings.download_url_ttl_seconds,
        max_upload_bytes=settings.max_upload_bytes,
    )
    return Container(
        settings=settings,
        engine=engine,
        repository=repository,
        queue=queue,
        object_store=object_store,
        job_service=job_service,
        executor=executor,
    )
