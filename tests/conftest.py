"""Shared fakes for pipeline tests. Nothing here shells out to ffmpeg or touches the network."""

import shutil
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from silencecut.domain.errors import ExtractionError, StorageError
from silencecut.domain.models import Account, SilenceInterval
from silencecut.domain.services.job_executor import JobExecutor
from silencecut.domain.services.job_service import JobService
from silencecut.infrastructure.persistence.in_memory_repo import InMemoryJobRepository
from silencecut.infrastructure.queue.in_memory_queue import InMemoryJobQueue
from silencecut.infrastructure.segment_assembler import SegmentAssembler


class FakeObjectStore:
    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.downloads: List[Path] = []
        self.uploads: List[str] = []
        self.download_error: Optional[Exception] = None
        self.upload_error: Optional[Exception] = None

    def download(self, key: str, destination: Path) -> None:
        if self.download_error is not None:
            raise self.download_error
        if key not in self.objects:
            raise StorageError(f"no such key {key}")
        destination.write_bytes(self.objects[key])
        self.downloads.append(destination)

    def upload(self, source: Path, key: str) -> None:
        if self.upload_error is not None:
            raise self.upload_error
        self.objects[key] = source.read_bytes()
        self.uploads.append(key)

    def presign_download(self, key: str, expires_in: int) -> str:
        return f"https://files.test/{key}?expires={expires_in}"


class FakeProber:
    """Returns ``input_duration`` for sources and ``output_duration`` for results."""

    def __init__(self, input_duration: float = 100.0, output_duration: Optional[float] = 85.0) -> None:
        self.input_duration = input_duration
        self.output_duration = output_duration
        self.error: Optional[Exception] = None

    def probe_duration(self, path: Path) -> float:
        if self.error is not None:
            raise self.error
        if path.stem == "output":
            if self.output_duration is None:
                raise RuntimeError("ffprobe crashed")
            return self.output_duration
        return self.input_duration


class FakeDetector:
    def __init__(self, silences: Optional[List[SilenceInterval]] = None) -> None:
        self.silences = silences if silences is not None else [SilenceInterval(10, 15), SilenceInterval(40, 42)]
        self.error: Optional[Exception] = None
        self.calls: List[Path] = []

    def detect_silences(self, path: Path, noise_floor_db: float, min_duration: float) -> List[SilenceInterval]:
        self.calls.append(path)
        if self.error is not None:
            raise self.error
        return list(self.silences)


class FakeMediaTool:
    """Stand-ins for the ffmpeg calls that write small marker files."""

    def __init__(self) -> None:
        self.extracted: List[tuple] = []
        self.copied: List[Path] = []
        self.concatenated: List[List[str]] = []
        self.fail_on_extract: Optional[int] = None

    def extract(self, source: Path, output: Path, start: float, end: float) -> None:
        if self.fail_on_extract is not None and len(self.extracted) == self.fail_on_extract:
            raise ExtractionError("segment extraction failed")
        output.write_text(f"{start}-{end}")
        self.extracted.append((start, end, output))

    def concat(self, manifest: Path, output: Path) -> None:
        lines = manifest.read_text(encoding="utf-8").splitlines()
        self.concatenated.append(lines)
        output.write_text("joined")

    def copy(self, source: Path, output: Path) -> None:
        shutil.copyfile(source, output)
        self.copied.append(source)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent = []
        self.error: Optional[Exception] = None

    def send(self, notification) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(notification)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def repository():
    return InMemoryJobRepository()


@pytest.fixture
def queue():
    return InMemoryJobQueue()


@pytest.fixture
def object_store():
    store = FakeObjectStore()
    store.objects["videos/input/acct-1/job-1/talk.mp4"] = b"source-bytes"
    return store


@pytest.fixture
def prober():
    return FakeProber()


@pytest.fixture
def detector():
    return FakeDetector()


@pytest.fixture
def media_tool():
    return FakeMediaTool()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def scratch_root(tmp_path):
    return tmp_path / "scratch"


@pytest.fixture
def executor(repository, object_store, prober, detector, media_tool, notifier, scratch_root):
    return JobExecutor(
        repository=repository,
        object_store=object_store,
        prober=prober,
        detector=detector,
        assembler=SegmentAssembler(extract=media_tool.extract, concat=media_tool.concat, copy=media_tool.copy),
        notifier=notifier,
        scratch_root=scratch_root,
    )


@pytest.fixture
def job_service(repository, queue, object_store):
    return JobService(repository, queue, object_store, max_upload_bytes=300 * 1024 * 1024)


@pytest.fixture
def account():
    return Account(id="acct-1", email="owner@example.com", display_name="Ada", credits=1)
