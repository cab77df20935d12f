"""
Parse the event log that ffmpeg's ``silencedetect`` filter writes to stderr.

Lines look like::

    [silencedetect @ 0x7f...] silence_start: 12.48
    [silencedetect @ 0x7f...] silence_end: 15.02 | silence_duration: 2.54

Timestamps are printed with ``%g``, so very small or very large values come
out in exponent form (``silence_start: 2.5e-05``).
"""
import re
from typing import Iterable, List, Optional

from silencecut.domain.models import SilenceInterval

_NUMBER = r"(-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)"
_START_RE = re.compile(r"silence_start:\s*" + _NUMBER)
_END_RE = re.compile(r"silence_end:\s*" + _NUMBER)


def parse_silencedetect(lines: Iterable[str]) -> List[SilenceInterval]:
    """
    Pair start/end markers into intervals, in the order they appear.

    A start without a matching end before the stream finishes is dropped,
    and a repeated start replaces the pending one.
    """
    intervals: List[SilenceInterval] = []
    pending_start: Optional[float] = None

    for line in lines:
        start_match = _START_RE.search(line)
        if start_match:
            # ffmpeg can report a tiny negative start at the head of a file
            pending_start = max(0.0, float(start_match.group(1)))

        end_match = _END_RE.search(line)
        if end_match and pending_start is not None:
            intervals.append(SilenceInterval(start=pending_start, end=float(end_match.group(1))))
            pending_start = None

    return intervals
