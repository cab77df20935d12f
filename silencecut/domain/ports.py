"""
Interfaces the domain services depend on. Concrete adapters live in
``silencecut.infrastructure``; tests substitute fakes.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from silencecut.domain.models import Account, Job, JobMessage, Segment, SilenceInterval


class DurationProber(Protocol):
    def probe_duration(self, path: Path) -> float:
        ...


class SilenceDetector(Protocol):
    def detect_silences(self, path: Path, noise_floor_db: float, min_duration: float) -> List[SilenceInterval]:
        ...


class Assembler(Protocol):
    def assemble(
        self,
        source: Path,
        segments: Sequence[Segment],
        duration: float,
        output: Path,
        workdir: Path,
    ) -> None:
        ...


class ObjectStore(Protocol):
    def download(self, key: str, destination: Path) -> None:
        ...

    def upload(self, source: Path, key: str) -> None:
        ...

    def presign_download(self, key: str, expires_in: int) -> str:
        ...


class JobRepository(Protocol):
    async def create_job(self, job: Job) -> Job:
        """Insert a queued job and consume one credit from its owner, atomically."""

    async def get(self, job_id: str) -> Optional[Job]:
        ...

    async def list_for_owner(self, owner_id: str, limit: int = 20, offset: int = 0) -> List[Job]:
        ...

    async def claim(self, job_id: str) -> Optional[Job]:
        """Move a queued (or abandoned processing) job to processing; None if missing or terminal."""

    async def mark_completed(self, job_id: str, output_key: str, duration: Optional[int]) -> bool:
        ...

    async def mark_failed(self, job_id: str, error: str) -> bool:
        """Fail a processing job and refund its owner once per (job, attempt), atomically."""

    async def requeue_failed(self, job_id: str) -> Job:
        """Re-charge the owner and reset a failed job to queued, atomically."""

    async def get_account(self, owner_id: str) -> Optional[Account]:
        ...

    async def save_account(self, account: Account) -> None:
        ...


@dataclass(frozen=True)
class Delivery:
    job_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    attempt: int = 1
    # identifies this lease; settling with a stale receipt is a no-op
    receipt: str = ""


class JobQueue(Protocol):
    async def enqueue(self, message: JobMessage, *, replace_leased: bool = False) -> bool:
        """
        Add a message keyed by its job id; False if one is already outstanding.

        With ``replace_leased`` a leased message is re-armed as a fresh pending
        one, and the old lease can no longer ack, retry or reject it.
        """

    async def receive(self) -> Optional[Delivery]:
        ...

    async def ack(self, delivery: Delivery) -> None:
        ...

    async def retry(self, delivery: Delivery, delay_seconds: float, reason: str) -> None:
        ...

    async def reject(self, delivery: Delivery, reason: str) -> None:
        ...

    async def reconnect(self) -> None:
        ...
