import asyncio
import logging
import math
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Generic, Optional, Tuple, TypeVar

from silencecut.domain.errors import SilenceCutError, TransientError
from silencecut.domain.models import ExecutionOutcome, Job, JobMessage
from silencecut.domain.ports import Assembler, DurationProber, JobRepository, ObjectStore, SilenceDetector
from silencecut.domain.services.segment_planner import plan_segments
from silencecut.infrastructure.notifications import Notification, NotificationSender, TemplateKind
from silencecut.infrastructure.object_store import output_key_for

logger = logging.getLogger(__name__)

T = TypeVar("T")

EMPTY_EDIT_MESSAGE = "No non-silent audio detected; nothing to keep"


@dataclass(frozen=True)
class StepResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[str] = None
    transient: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ExecutionReport:
    outcome: ExecutionOutcome
    error: Optional[str] = None


def whole_seconds(duration: float) -> int:
    """Round half up, so 2.5s is recorded as 3."""
    return int(math.floor(duration + 0.5))


class JobExecutor:
    """
    Runs one job through download -> analyse -> plan -> assemble -> upload and
    drives its state: queued -> processing -> completed | failed.

    Every step reports a ``StepResult``; nothing raised by a step escapes
    ``execute``. A failed job is refunded exactly once per attempt.
    """

    def __init__(
        self,
        *,
        repository: JobRepository,
        object_store: ObjectStore,
        prober: DurationProber,
        detector: SilenceDetector,
        assembler: Assembler,
        notifier: NotificationSender,
        scratch_root: Path,
        noise_floor_db: float = -30.0,
        min_silence_seconds: float = 0.5,
        download_url_ttl_seconds: int = 86400,
        app_url: Optional[str] = None,
    ) -> None:
        self._repository = repository
        self._object_store = object_store
        self._prober = prober
        self._detector = detector
        self._assembler = assembler
        self._notifier = notifier
        self._scratch_root = scratch_root
        self._noise_floor_db = noise_floor_db
        self._min_silence = min_silence_seconds
        self._download_url_ttl = download_url_ttl_seconds
        self._app_url = app_url.rstrip("/") if app_url else None

    async def execute(self, message: JobMessage, *, final_attempt: bool = True) -> ExecutionReport:
        try:
            job = await self._repository.claim(message.job_id)
        except Exception as exc:  # noqa: BLE001 - store outage, leave for redelivery
            logger.exception("Could not claim job %s", message.job_id)
            return ExecutionReport(ExecutionOutcome.RETRY, f"Could not claim job: {exc}")

        if job is None:
            logger.info("Job %s is unknown or already terminal; ignoring delivery", message.job_id)
            return ExecutionReport(ExecutionOutcome.SKIPPED)

        logger.info("Job %s processing (attempt %d, input=%s)", job.id, job.attempt, job.input_key)

        self._scratch_root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix=f"{job.id}-", dir=self._scratch_root))
        try:
            result = await self._run_pipeline(job, workdir)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        if result.ok:
            output_key, duration = result.value
            return await self._complete(job, output_key, duration)

        if result.transient and not final_attempt:
            logger.warning("Job %s hit a transient error, leaving it for redelivery: %s", job.id, result.error)
            return ExecutionReport(ExecutionOutcome.RETRY, result.error)

        return await self._fail(job, result.error)

    async def _step(self, name: str, func: Callable[..., Any], *args: Any) -> StepResult:
        worker = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            value = await asyncio.shield(worker)
        except asyncio.CancelledError:
            # The thread cannot be interrupted and writes into the job's
            # scratch dir, which is removed once execute() unwinds
            logger.warning("Step '%s' cancelled; waiting for its worker thread to finish", name)
            await asyncio.gather(worker, return_exceptions=True)
            raise
        except TransientError as exc:
            return StepResult(error=str(exc), transient=True)
        except SilenceCutError as exc:
            return StepResult(error=str(exc))
        except Exception as exc:  # noqa: BLE001 - top-level guard
            logger.exception("Unexpected error in step '%s'", name)
            return StepResult(error=f"Unexpected error during {name}: {exc}")
        return StepResult(value=value)

    async def _run_pipeline(self, job: Job, workdir: Path) -> StepResult[Tuple[str, Optional[int]]]:
        suffix = Path(job.original_filename).suffix or ".mp4"
        source = workdir / f"input{suffix}"
        output = workdir / f"output{suffix}"

        downloaded = await self._step("download", self._object_store.download, job.input_key, source)
        if not downloaded.ok:
            return downloaded

        duration = await self._step("probe duration", self._prober.probe_duration, source)
        if not duration.ok:
            return duration

        silences = await self._step(
            "detect silences", self._detector.detect_silences, source, self._noise_floor_db, self._min_silence
        )
        if not silences.ok:
            return silences

        segments = plan_segments(duration.value, silences.value)
        logger.info(
            "Job %s: duration %.2fs, %d silences, %d segments kept",
            job.id,
            duration.value,
            len(silences.value),
            len(segments),
        )
        if not segments:
            return StepResult(error=EMPTY_EDIT_MESSAGE)

        assembled = await self._step(
            "assemble", self._assembler.assemble, source, segments, duration.value, output, workdir
        )
        if not assembled.ok:
            return assembled

        output_duration = await self._step("probe output", self._prober.probe_duration, output)
        if output_duration.ok:
            recorded_duration: Optional[int] = whole_seconds(output_duration.value)
        else:
            logger.warning("Job %s: could not probe output duration: %s", job.id, output_duration.error)
            recorded_duration = None

        key = output_key_for(job.owner_id, job.id, job.original_filename)
        uploaded = await self._step("upload", self._object_store.upload, output, key)
        if not uploaded.ok:
            return uploaded

        return StepResult(value=(key, recorded_duration))

    async def _complete(self, job: Job, output_key: str, duration: Optional[int]) -> ExecutionReport:
        try:
            transitioned = await self._repository.mark_completed(job.id, output_key, duration)
        except Exception as exc:  # noqa: BLE001 - store outage, leave for redelivery
            logger.exception("Could not record completion of job %s", job.id)
            return ExecutionReport(ExecutionOutcome.RETRY, f"Could not record completion: {exc}")

        if not transitioned:
            logger.warning("Job %s left processing before completion was recorded", job.id)
            return ExecutionReport(ExecutionOutcome.SKIPPED)

        logger.info("Job %s completed -> %s", job.id, output_key)
        try:
            url = await asyncio.to_thread(self._object_store.presign_download, output_key, self._download_url_ttl)
        except Exception:  # noqa: BLE001 - notification is best-effort
            logger.warning("Job %s: could not presign download URL; skipping notification", job.id, exc_info=True)
        else:
            await self._notify(
                job,
                TemplateKind.COMPLETED,
                {"download_url": url, "expires_in_seconds": self._download_url_ttl},
            )
        return ExecutionReport(ExecutionOutcome.COMPLETED)

    async def _fail(self, job: Job, error: str) -> ExecutionReport:
        try:
            transitioned = await self._repository.mark_failed(job.id, error)
        except Exception as exc:  # noqa: BLE001 - store outage, leave for redelivery
            logger.exception("Could not record failure of job %s", job.id)
            return ExecutionReport(ExecutionOutcome.RETRY, f"Could not record failure: {exc}")

        if not transitioned:
            logger.warning("Job %s left processing before failure was recorded", job.id)
            return ExecutionReport(ExecutionOutcome.SKIPPED, error)

        logger.info("Job %s failed (attempt %d, credit refunded): %s", job.id, job.attempt, error)
        await self._notify(job, TemplateKind.FAILED, {"error": error})
        return ExecutionReport(ExecutionOutcome.FAILED, error)

    async def _notify(self, job: Job, kind: TemplateKind, payload: dict) -> None:
        try:
            account = await self._repository.get_account(job.owner_id)
            if account is None or not account.email:
                logger.info("Job %s: no email address for %s; skipping %s notification", job.id, job.owner_id, kind.value)
                return
            details = {"user_name": account.display_name, "filename": job.original_filename, **payload}
            if self._app_url:
                details["job_url"] = f"{self._app_url}/dashboard/jobs/{job.id}"
            notification = Notification(recipient=account.email, template_kind=kind, payload=details)
            await asyncio.to_thread(self._notifier.send, notification)
        except Exception:  # noqa: BLE001 - notifications are fire-and-forget
            logger.warning("Job %s: %s notification failed", job.id, kind.value, exc_info=True)
