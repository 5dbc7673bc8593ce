"""ffmpeg command lines and incremental parsing of ffmpeg's stderr.

ffmpeg reports progress on stderr as free text. Chunks arrive at arbitrary
boundaries and in-place updates use carriage returns, so ProgressParser keeps
a carry-over buffer and only processes complete lines.
"""

import math
import re
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from fmc.domain.errors import DurationParseError

UNKNOWN_DURATION = "N/A"
DURATION_MARKER = "  Duration"
PROGRESS_MARKERS = ("frame=", "size=")

_DURATION_RE = re.compile(r"Duration: (N/A|[0-9.:]+)")
_EQUALS_RE = re.compile(r"=\s*")
_SPACES_RE = re.compile(r"\s+")


def build_command(
    ffmpeg: str,
    source: Path,
    destination: Path,
    presets: Iterable[str],
    threads: int,
    resolve_args: Callable[[str], List[str]],
) -> List[str]:
    """Constructs the ffmpeg argv: threads, input, preset fragments in chain order, output."""
    cmd = [
        ffmpeg,
        "-threads", str(threads),
        "-i", str(source),
    ]
    for token in presets:
        cmd.extend(resolve_args(token))
    cmd.append(str(destination))
    return cmd


def parse_timestamp(value: Optional[str]) -> float:
    """Converts HH:MM:SS[.frac] to seconds.

    N/A counts as 0. Anything unparsable yields NaN so that the ratio
    computed from it is discarded.
    """
    if value is None:
        return math.nan
    if value == UNKNOWN_DURATION:
        return 0.0
    parts = value.split(":")
    if len(parts) != 3:
        return math.nan
    try:
        hours, minutes, seconds = (float(p) for p in parts)
    except ValueError:
        return math.nan
    return (hours * 60 + minutes) * 60 + seconds


def parse_progress_fields(line: str) -> Dict[str, str]:
    """Splits 'frame=  120 fps= 30 time=00:00:05.00' into a key/value dict."""
    normalized = _SPACES_RE.sub(" ", _EQUALS_RE.sub("=", line)).strip()
    fields: Dict[str, str] = {}
    for token in normalized.split(" "):
        if "=" not in token:
            continue
        key, value = token.split("=", 1)
        fields[key] = value
    return fields


def compute_ratio(time_value: Optional[str], duration_value: Optional[str]) -> float:
    """time / duration clamped to [0, 1]; NaN when either side is unusable."""
    current = parse_timestamp(time_value)
    total = parse_timestamp(duration_value)
    if not math.isfinite(current) or not math.isfinite(total) or total <= 0:
        return math.nan
    return min(1.0, max(0.0, current / total))


class ProgressParser:
    """Stateful parser for one ffmpeg process' stderr."""

    def __init__(self):
        self.buffer = ""
        self.duration: Optional[str] = None
        self.progress = 0.0
        self.fields: Dict[str, str] = {}

    def feed(self, chunk: str) -> List[float]:
        """Consumes a chunk and returns the progress values it produced, in order."""
        text = (self.buffer + chunk).replace("\r", "\n")
        lines = text.split("\n")
        self.buffer = lines.pop()
        updates: List[float] = []
        for line in lines:
            value = self.process_line(line)
            if value is not None:
                updates.append(value)
        return updates

    def flush(self) -> List[float]:
        """Processes whatever is left in the carry-over buffer at EOF."""
        remainder, self.buffer = self.buffer, ""
        if not remainder:
            return []
        value = self.process_line(remainder)
        return [] if value is None else [value]

    def process_line(self, line: str) -> Optional[float]:
        if line.startswith(PROGRESS_MARKERS):
            self.fields = parse_progress_fields(line)
            ratio = compute_ratio(self.fields.get("time"), self.duration)
            if not math.isnan(ratio):
                self.progress = ratio
            return self.progress

        if line.startswith(DURATION_MARKER):
            match = _DURATION_RE.search(line)
            if not match:
                raise DurationParseError(line)
            self.duration = match.group(1)
        return None
