import time
import uuid
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, Optional

from silencecut.domain.models import JobMessage
from silencecut.domain.ports import Delivery


@dataclass
class _Entry:
    payload: Dict[str, Any]
    attempts: int = 0
    available_at: float = field(default_factory=time.monotonic)
    leased_until: Optional[float] = None
    dead_reason: Optional[str] = None
    receipt: Optional[str] = None


class InMemoryJobQueue:
    """
    Process-local queue with the same lease/redelivery semantics as
    ``SqlJobQueue``. Intended for local development and tests.
    """

    def __init__(self, visibility_timeout_seconds: float = 1800) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._visibility_timeout = visibility_timeout_seconds
        self._lock = Lock()

    async def enqueue(self, message: JobMessage, *, replace_leased: bool = False) -> bool:
        return self.put_raw(message.job_id, message.to_payload(), replace_leased=replace_leased)

    def put_raw(self, job_id: str, payload: Dict[str, Any], *, replace_leased: bool = False) -> bool:
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is not None and entry.dead_reason is None:
                if not (replace_leased and entry.leased_until is not None):
                    return False
            self._entries[job_id] = _Entry(payload=dict(payload))
            return True

    async def receive(self) -> Optional[Delivery]:
        now = time.monotonic()
        with self._lock:
            ready = [
                (entry.available_at, job_id)
                for job_id, entry in self._entries.items()
                if entry.dead_reason is None
                and (
                    (entry.leased_until is None and entry.available_at <= now)
                    or (entry.leased_until is not None and entry.leased_until < now)
                )
            ]
            if not ready:
                return None
            _, job_id = min(ready)
            entry = self._entries[job_id]
            entry.attempts += 1
            entry.leased_until = now + self._visibility_timeout
            entry.receipt = uuid.uuid4().hex
            return Delivery(job_id=job_id, payload=dict(entry.payload), attempt=entry.attempts, receipt=entry.receipt)

    def _owned(self, delivery: Delivery) -> Optional[_Entry]:
        entry = self._entries.get(delivery.job_id)
        if entry is None or entry.leased_until is None or entry.receipt != delivery.receipt:
            return None
        return entry

    async def ack(self, delivery: Delivery) -> None:
        with self._lock:
            if self._owned(delivery) is not None:
                del self._entries[delivery.job_id]

    async def retry(self, delivery: Delivery, delay_seconds: float, reason: str) -> None:
        with self._lock:
            entry = self._owned(delivery)
            if entry is not None:
                entry.leased_until = None
                entry.available_at = time.monotonic() + delay_seconds

    async def reject(self, delivery: Delivery, reason: str) -> None:
        with self._lock:
            entry = self._owned(delivery)
            if entry is not None:
                entry.leased_until = None
                entry.dead_reason = reason

    async def reconnect(self) -> None:
        return None

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for e in self._entries.values() if e.dead_reason is None)

    def dead_letters(self) -> Dict[str, str]:
        with self._lock:
            return {job_id: e.dead_reason for job_id, e in self._entries.items() if e.dead_reason is not None}
