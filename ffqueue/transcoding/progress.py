"""
Parser for ffmpeg's ``-progress`` output.

ffmpeg writes blocks of ``key=value`` lines to the progress pipe while it
encodes. Fields arrive on separate lines, so callers accumulate partial
records (see ProgressTracker) rather than replacing one with the next.
"""

import math
import re
from dataclasses import dataclass, asdict
from typing import Optional, Union

_SPEED_RE = re.compile(r"^(\d+(?:\.\d+)?)x$")
_UNKNOWN_SPEEDS = ("N/A", "inf", "0x")


@dataclass
class Progress:
    """Progress snapshot for one job."""
    ratio: float = 0.0
    time_ms: int = 0
    speed: float = 0.0
    bitrate: Optional[str] = None
    eta_sec: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PartialProgress:
    """Fields parsed from a chunk; None means "not present in this chunk"."""
    time_ms: Optional[int] = None
    speed: Optional[float] = None
    bitrate: Optional[str] = None

    def merge(self, other: "PartialProgress") -> "PartialProgress":
        """Overlay the fields present in ``other`` onto this record."""
        if other.time_ms is not None:
            self.time_ms = other.time_ms
        if other.speed is not None:
            self.speed = other.speed
        if other.bitrate is not None:
            self.bitrate = other.bitrate
        return self

    @property
    def empty(self) -> bool:
        return self.time_ms is None and self.speed is None and self.bitrate is None


def _parse_speed(value: str) -> Optional[float]:
    if value in _UNKNOWN_SPEEDS:
        return 0.0
    match = _SPEED_RE.match(value)
    if not match:
        return None
    speed = float(match.group(1))
    if not math.isfinite(speed) or speed < 0:
        return 0.0
    return speed


def parse_progress_chunk(buffer: Union[bytes, str]) -> PartialProgress:
    """Parse one or more ``key=value`` lines into a partial progress record."""
    text = buffer.decode("utf-8", errors="ignore") if isinstance(buffer, bytes) else buffer
    result = PartialProgress()

    for line in text.splitlines():
        line = line.strip()
        if not line or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key, value = key.strip(), value.strip()
        if not key or not value:
            continue

        if key == "out_time_ms":
            try:
                time_ms = int(value)
            except ValueError:
                continue
            if time_ms >= 0:
                result.time_ms = time_ms

        elif key == "speed":
            speed = _parse_speed(value)
            if speed is not None:
                result.speed = speed

        elif key == "bitrate":
            if value != "N/A":
                result.bitrate = value

    return result


def calculate_progress(partial: PartialProgress, total_duration_ms: float) -> Progress:
    """
    Combine a partial record with the source duration.

    Unknown duration degrades ``ratio`` to 0 but ``eta_sec`` to None; the two
    fields signal "unknown" differently on purpose.
    """
    time_ms = partial.time_ms or 0
    speed = partial.speed or 0.0

    ratio = 0.0
    if total_duration_ms > 0:
        ratio = min(max(time_ms / total_duration_ms, 0.0), 1.0)

    eta_sec: Optional[float] = None
    if speed > 0 and total_duration_ms > 0:
        eta_sec = max(0.0, (total_duration_ms - time_ms) / (speed * 1000))

    return Progress(
        ratio=ratio,
        time_ms=time_ms,
        speed=speed,
        bitrate=partial.bitrate,
        eta_sec=eta_sec,
    )


def is_valid_progress_line(line: str) -> bool:
    return "out_time_ms=" in line or "speed=" in line or "bitrate=" in line


class ProgressTracker:
    """
    Accumulates progress lines for one process and reports a new snapshot
    only when the encoded timestamp moves forward.
    """

    def __init__(self, total_duration_ms: float):
        self.total_duration_ms = total_duration_ms
        self.partial = PartialProgress()
        self._last_time_ms: Optional[int] = None

    def feed_line(self, line: str) -> Optional[Progress]:
        if not is_valid_progress_line(line):
            return None

        update = parse_progress_chunk(line)
        if update.empty:
            return None
        self.partial.merge(update)

        current = self.partial.time_ms
        if current is None:
            return None
        if self._last_time_ms is not None and current <= self._last_time_ms:
            return None

        self._last_time_ms = current
        return calculate_progress(self.partial, self.total_duration_ms)


def format_duration(seconds: float) -> str:
    """Format seconds as e.g. ``45s``, ``3m 12s`` or ``1h 02m 03s``."""
    seconds = max(0, int(round(seconds)))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60:02d}s"
    hours, rest = divmod(seconds, 3600)
    return f"{hours}h {rest // 60:02d}m {rest % 60:02d}s"


def format_progress(progress: Progress) -> str:
    percent = f"{progress.ratio * 100:.1f}%" if progress.ratio > 0 else "?%"
    eta = format_duration(progress.eta_sec) if progress.eta_sec is not None else "unknown"
    bitrate = progress.bitrate or "unknown"
    return f"{percent} | speed {progress.speed:.1f}x | ETA {eta} | bitrate {bitrate}"
