import ffmpeg
import numpy as np
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from silencecut.domain.errors import AnalysisError, MissingObjectError, StorageError
from silencecut.infrastructure import ffmpeg_adapter
from silencecut.infrastructure.librosa_detector import silences_from_signal
from silencecut.infrastructure.object_store import S3ObjectStore, output_key_for


class FakeS3Client:
    def __init__(self, error=None):
        self.error = error
        self.uploads = []

    def download_file(self, bucket, key, filename):
        if self.error is not None:
            raise self.error

    def upload_file(self, filename, bucket, key, ExtraArgs=None):
        if self.error is not None:
            raise self.error
        self.uploads.append((bucket, key, ExtraArgs))

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://{Params['Bucket']}.s3.test/{Params['Key']}?X-Amz-Expires={ExpiresIn}"


def test_output_key_is_scoped_by_owner_and_job():
    assert output_key_for("ws-9", "job-3", "talk.mp4") == "videos/output/ws-9/job-3/talk.mp4"
    assert output_key_for("ws-9", "job-3", "../../etc/talk.mp4") == "videos/output/ws-9/job-3/talk.mp4"


def test_missing_input_is_not_transient(tmp_path):
    error = ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
    store = S3ObjectStore("bucket", client=FakeS3Client(error))

    with pytest.raises(MissingObjectError):
        store.download("videos/input/x.mp4", tmp_path / "input.mp4")


def test_connection_failure_is_transient(tmp_path):
    store = S3ObjectStore("bucket", client=FakeS3Client(EndpointConnectionError(endpoint_url="https://s3.test")))

    with pytest.raises(StorageError):
        store.download("videos/input/x.mp4", tmp_path / "input.mp4")


def test_upload_sets_content_type_and_presigns(tmp_path):
    client = FakeS3Client()
    store = S3ObjectStore("bucket", client=client)
    source = tmp_path / "output.mp4"
    source.write_bytes(b"x")

    store.upload(source, "videos/output/a/b/talk.mp4")

    assert client.uploads == [("bucket", "videos/output/a/b/talk.mp4", {"ContentType": "video/mp4"})]
    assert store.presign_download("k", 3600) == "https://bucket.s3.test/k?X-Amz-Expires=3600"


def test_probe_duration_reads_container_duration(monkeypatch, tmp_path):
    monkeypatch.setattr(ffmpeg, "probe", lambda path: {"format": {"duration": "93.120000"}})

    assert ffmpeg_adapter.probe_duration(tmp_path / "input.mp4") == pytest.approx(93.12)


@pytest.mark.parametrize("info", [{}, {"format": {"duration": "N/A"}}, {"format": {"duration": "0"}}])
def test_probe_duration_rejects_unusable_metadata(monkeypatch, tmp_path, info):
    monkeypatch.setattr(ffmpeg, "probe", lambda path: info)

    with pytest.raises(AnalysisError):
        ffmpeg_adapter.probe_duration(tmp_path / "input.mp4")


def test_probe_duration_wraps_ffprobe_errors(monkeypatch, tmp_path):
    def broken(path):
        raise ffmpeg.Error("ffprobe", b"", b"moov atom not found\nInvalid data found")

    monkeypatch.setattr(ffmpeg, "probe", broken)

    with pytest.raises(AnalysisError, match="Invalid data found"):
        ffmpeg_adapter.probe_duration(tmp_path / "input.mp4")


def test_librosa_finds_the_quiet_gap():
    sr = 16000
    t = np.arange(sr) / sr
    tone = 0.5 * np.sin(2 * np.pi * 440 * t)
    y = np.concatenate([tone, np.zeros(sr), tone]).astype(np.float32)

    [interval] = silences_from_signal(y, sr, noise_floor_db=-30.0, min_duration=0.5)

    assert interval.start == pytest.approx(1.0, abs=0.15)
    assert interval.end == pytest.approx(2.0, abs=0.15)


def test_librosa_ignores_short_pauses():
    sr = 16000
    t = np.arange(sr) / sr
    tone = 0.5 * np.sin(2 * np.pi * 440 * t)
    y = np.concatenate([tone, np.zeros(sr // 5), tone]).astype(np.float32)

    assert silences_from_signal(y, sr, noise_floor_db=-30.0, min_duration=0.5) == []


class FakeStream:
    """Chainable stand-in for an ffmpeg-python node graph."""

    def __init__(self, stderr=b"", error=None):
        self.stderr = stderr
        self.error = error
        self.filters = []
        self.outputs = []

    @property
    def audio(self):
        return self

    def filter(self, name, **kwargs):
        self.filters.append((name, kwargs))
        return self

    def output(self, *args, **kwargs):
        self.outputs.append((args, kwargs))
        return self

    def run(self, capture_stdout=False, capture_stderr=False):
        if self.error is not None:
            raise self.error
        return b"", self.stderr


SILENCEDETECT_STDERR = (
    b"Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'input.mp4':\n"
    b"  Duration: 00:00:40.00, start: 0.000000, bitrate: 812 kb/s\n"
    b"[silencedetect @ 0x5581] silence_start: 2.5e-05\n"
    b"[silencedetect @ 0x5581] silence_end: 3.1 | silence_duration: 3.09998\n"
    b"size=N/A time=00:00:12.00 bitrate=N/A speed= 96x\n"
    b"[silencedetect @ 0x5581] silence_start: 12.75\n"
    b"[silencedetect @ 0x5581] silence_end: 14 | silence_duration: 1.25\n"
    b"[silencedetect @ 0x5581] silence_start: 38.204\n"
    b"video:0kB audio:3750kB subtitle:0kB other streams:0kB global headers:0kB muxing overhead: unknown\n"
)


def test_detect_silences_parses_ffmpeg_stderr(monkeypatch, tmp_path):
    stream = FakeStream(stderr=SILENCEDETECT_STDERR)
    monkeypatch.setattr(ffmpeg, "input", lambda path: stream)

    intervals = ffmpeg_adapter.detect_silences(tmp_path / "input.mp4", -30.0, 0.5)

    assert [(i.start, i.end) for i in intervals] == [(2.5e-05, 3.1), (12.75, 14.0)]
    assert stream.filters == [("silencedetect", {"noise": "-30.0dB", "d": 0.5})]
    assert stream.outputs == [(("-",), {"format": "null"})]


def test_detect_silences_wraps_ffmpeg_errors(monkeypatch, tmp_path):
    error = ffmpeg.Error("ffmpeg", b"", b"input.mp4: Invalid data found when processing input")
    monkeypatch.setattr(ffmpeg, "input", lambda path: FakeStream(error=error))

    with pytest.raises(AnalysisError, match="Invalid data found"):
        ffmpeg_adapter.detect_silences(tmp_path / "input.mp4", -30.0, 0.5)
