"""
Silence detection computed in-process with librosa instead of scraping
ffmpeg's log output. Frames whose RMS level sits under the noise floor (in
dBFS) for at least ``min_duration`` seconds are reported as silence.
"""
import tempfile
from pathlib import Path
from typing import List

import librosa
import numpy as np

from silencecut.domain.errors import AnalysisError
from silencecut.domain.models import SilenceInterval
from silencecut.infrastructure.ffmpeg_adapter import extract_audio


def _silent_runs(silent: np.ndarray) -> List[tuple]:
    """Return (start_frame, end_frame) pairs for each run of True values, end exclusive."""
    padded = np.concatenate(([False], silent, [False]))
    edges = np.flatnonzero(np.diff(padded.astype(np.int8)))
    return list(zip(edges[0::2], edges[1::2]))


def silences_from_signal(
    y: np.ndarray,
    sr: int,
    noise_floor_db: float,
    min_duration: float,
    hop_length: int = 512,
    frame_length: int = 2048,
) -> List[SilenceInterval]:
    if len(y) == 0:
        return []

    rms = librosa.feature.rms(y=y, frame_length=frame_length, hop_length=hop_length)[0]
    level_db = librosa.amplitude_to_db(rms, ref=1.0)
    total = len(y) / sr

    intervals: List[SilenceInterval] = []
    for start_frame, end_frame in _silent_runs(level_db < noise_floor_db):
        start = float(librosa.frames_to_time(start_frame, sr=sr, hop_length=hop_length))
        end = min(float(librosa.frames_to_time(end_frame, sr=sr, hop_length=hop_length)), total)
        if end - start >= min_duration:
            intervals.append(SilenceInterval(start=start, end=end))
    return intervals


class LibrosaSilenceDetector:
    def __init__(self, sample_rate: int = 16000) -> None:
        self._sample_rate = sample_rate

    def detect_silences(self, path: Path, noise_floor_db: float, min_duration: float) -> List[SilenceInterval]:
        # Decoded audio stays next to the source so it shares the job's scratch space
        with tempfile.TemporaryDirectory(dir=path.parent) as tmpdir:
            wav_path = Path(tmpdir) / "audio.wav"
            extract_audio(path, wav_path, sample_rate=self._sample_rate)
            try:
                y, sr = librosa.load(str(wav_path), sr=self._sample_rate, mono=True)
            except Exception as e:  # noqa: BLE001 - decoder errors vary by backend
                raise AnalysisError(f"Could not decode audio: {e}") from e

        return silences_from_signal(y, sr, noise_floor_db, min_duration)
