from pathlib import Path
from typing import List

import ffmpeg

from silencecut.domain.errors import AnalysisError, ExtractionError
from silencecut.domain.models import SilenceInterval
from silencecut.infrastructure.silence_parser import parse_silencedetect


def _stderr_tail(exc: ffmpeg.Error, lines: int = 5) -> str:
    text = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
    return " | ".join(text.splitlines()[-lines:]) or str(exc)


def probe_duration(path: Path) -> float:
    """
    Return the container duration of a media file in seconds.
    """
    try:
        info = ffmpeg.probe(str(path))
    except ffmpeg.Error as e:
        raise AnalysisError(f"ffprobe could not read {path.name}: {_stderr_tail(e)}") from e
    except OSError as e:
        raise AnalysisError(f"ffprobe unavailable: {e}") from e

    raw = (info.get("format") or {}).get("duration")
    try:
        duration = float(raw)
    except (TypeError, ValueError) as e:
        raise AnalysisError(f"No duration reported for {path.name}") from e
    if duration <= 0:
        raise AnalysisError(f"Invalid duration {duration} for {path.name}")
    return duration


def detect_silences(path: Path, noise_floor_db: float, min_duration: float) -> List[SilenceInterval]:
    """
    Run ffmpeg's silencedetect filter over the audio track and return the
    silent intervals it reports, in stream order.
    """
    stream = (
        ffmpeg.input(str(path))
        .audio.filter("silencedetect", noise=f"{noise_floor_db}dB", d=min_duration)
        .output("-", format="null")
    )
    try:
        _, err = stream.run(capture_stdout=True, capture_stderr=True)
    except ffmpeg.Error as e:
        raise AnalysisError(f"Silence detection failed: {_stderr_tail(e)}") from e
    except OSError as e:
        raise AnalysisError(f"ffmpeg unavailable: {e}") from e

    return parse_silencedetect(err.decode("utf-8", errors="replace").splitlines())


def extract_segment(source: Path, output: Path, start: float, end: float) -> None:
    """
    Cut [start, end) out of ``source`` with a stream copy (no re-encode).
    """
    try:
        (
            ffmpeg.input(str(source))
            .output(
                str(output),
                ss=f"{start:.3f}",
                t=f"{end - start:.3f}",
                c="copy",
                avoid_negative_ts="make_zero",
            )
            .overwrite_output()
            .run(quiet=True)
        )
    except ffmpeg.Error as e:
        raise ExtractionError(f"Segment {start:.2f}-{end:.2f}s extraction failed: {_stderr_tail(e)}") from e
    except OSError as e:
        raise ExtractionError(f"ffmpeg unavailable: {e}") from e


def concat_segments(manifest: Path, output: Path) -> None:
    """
    Join the files listed in a concat-demuxer manifest, in order, without re-encoding.
    """
    try:
        (
            ffmpeg.input(str(manifest), format="concat", safe=0)
            .output(str(output), c="copy")
            .overwrite_output()
            .run(quiet=True)
        )
    except ffmpeg.Error as e:
        raise ExtractionError(f"Concatenation failed: {_stderr_tail(e)}") from e
    except OSError as e:
        raise ExtractionError(f"ffmpeg unavailable: {e}") from e


def copy_verbatim(source: Path, output: Path) -> None:
    try:
        ffmpeg.input(str(source)).output(str(output), c="copy").overwrite_output().run(quiet=True)
    except ffmpeg.Error as e:
        raise ExtractionError(f"Copy failed: {_stderr_tail(e)}") from e
    except OSError as e:
        raise ExtractionError(f"ffmpeg unavailable: {e}") from e


def extract_audio(input_video: Path, output_audio: Path, *, sample_rate: int = 16000) -> None:
    """
    Extract mono WAV audio suitable for analysis from a video file.
    """
    try:
        (
            ffmpeg.input(str(input_video))
            .output(
                str(output_audio),
                ac=1,  # mono
                ar=sample_rate,
                format="wav",
            )
            .overwrite_output()
            .run(quiet=True)
        )
    except ffmpeg.Error as e:
        raise AnalysisError(f"Audio extraction failed: {_stderr_tail(e)}") from e
    except OSError as e:
        raise AnalysisError(f"ffmpeg unavailable: {e}") from e


class FfmpegSilenceDetector:
    """Silence detection backed by ffmpeg's silencedetect filter."""

    def detect_silences(self, path: Path, noise_floor_db: float, min_duration: float) -> List[SilenceInterval]:
        return detect_silences(path, noise_floor_db, min_duration)


class FfmpegProber:
    def probe_duration(self, path: Path) -> float:
        return probe_duration(path)
