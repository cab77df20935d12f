import logging
import shutil
from pathlib import Path
from typing import Callable, List, Sequence

from silencecut.domain.errors import EmptyEditError
from silencecut.domain.models import Segment
from silencecut.domain.services.segment_planner import is_full_span
from silencecut.infrastructure.ffmpeg_adapter import concat_segments, copy_verbatim, extract_segment

logger = logging.getLogger(__name__)


def _manifest_line(path: Path) -> str:
    # concat demuxer quoting: close the quote, emit an escaped quote, reopen
    escaped = str(path.resolve()).replace("'", "'\\''")
    return f"file '{escaped}'"


class SegmentAssembler:
    """
    Materialize the kept segments as stream-copied clips and join them in order.

    Per-segment clips and the concat manifest live under ``workdir`` and are
    removed on every exit path.
    """

    def __init__(
        self,
        extract: Callable[[Path, Path, float, float], None] = extract_segment,
        concat: Callable[[Path, Path], None] = concat_segments,
        copy: Callable[[Path, Path], None] = copy_verbatim,
    ) -> None:
        self._extract = extract
        self._concat = concat
        self._copy = copy

    def assemble(
        self,
        source: Path,
        segments: Sequence[Segment],
        duration: float,
        output: Path,
        workdir: Path,
    ) -> None:
        if not segments:
            raise EmptyEditError("No non-silent audio detected; nothing to keep")

        if is_full_span(list(segments), duration):
            logger.info("No silence to remove in %s, copying verbatim", source.name)
            self._copy(source, output)
            return

        ordered: List[Segment] = sorted(segments, key=lambda s: s.start)
        parts_dir = workdir / "segments"
        manifest = workdir / "concat.txt"
        suffix = source.suffix or ".mp4"
        parts_dir.mkdir(parents=True, exist_ok=True)

        try:
            part_paths: List[Path] = []
            for index, segment in enumerate(ordered):
                part = parts_dir / f"segment-{index:05d}{suffix}"
                self._extract(source, part, segment.start, segment.end)
                part_paths.append(part)

            manifest.write_text("\n".join(_manifest_line(p) for p in part_paths) + "\n", encoding="utf-8")
            logger.info("Concatenating %d segments into %s", len(part_paths), output.name)
            self._concat(manifest, output)
        except BaseException:
            output.unlink(missing_ok=True)
            raise
        finally:
            shutil.rmtree(parts_dir, ignore_errors=True)
            manifest.unlink(missing_ok=True)
