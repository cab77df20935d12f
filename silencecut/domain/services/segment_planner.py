from typing import Iterable, List

from silencecut.domain.models import Segment, SilenceInterval


def plan_segments(duration: float, silences: Iterable[SilenceInterval]) -> List[Segment]:
    """
    Compute the non-silent ranges of [0, duration).

    Silences are expected in ascending order. Touching or overlapping
    intervals never yield a zero-length segment, and silence past the end of
    the media is clipped to ``duration``. An empty result means the whole
    source is silent.
    """
    segments: List[Segment] = []
    cursor = 0.0

    for silence in silences:
        start = min(silence.start, duration)
        if start > cursor:
            segments.append(Segment(start=cursor, end=start))
        cursor = max(cursor, min(silence.end, duration))

    if cursor < duration:
        segments.append(Segment(start=cursor, end=duration))

    return segments


def is_full_span(segments: List[Segment], duration: float) -> bool:
    """True when the plan keeps the whole source, so no cutting is needed."""
    return len(segments) == 1 and segments[0].start <= 0 and segments[0].end >= duration
