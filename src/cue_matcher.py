"""
Ad-insertion cue detection for HLS playlist lines.

Rules are evaluated in a fixed order and the first match wins, so a
DATERANGE tag carrying SCTE35 data is reported as DATERANGE only when no
earlier rule claims the line.
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

_DURATION_RE = re.compile(r"DURATION=([0-9.]+)")


class CueKind(str, Enum):
    SCTE35 = "SCTE35"
    DATERANGE = "DATERANGE"
    CUE_OUT = "CUE_OUT"
    CUE_IN = "CUE_IN"


@dataclass(frozen=True)
class Cue:
    kind: CueKind
    duration_seconds: Optional[float] = None
    raw_payload: Optional[str] = None


def _payload(line: str) -> str:
    """Text after the first colon, or empty when the tag carries no value."""
    _, sep, rest = line.partition(":")
    return rest if sep else ""


def _parse_duration(line: str) -> Optional[float]:
    match = _DURATION_RE.search(line)
    if not match:
        return None
    try:
        value = float(match.group(1))
    except ValueError:
        # e.g. "DURATION=1.2.3"
        return None
    # hundreds of digits overflow to inf
    return value if math.isfinite(value) else None


def _match_scte35(line: str) -> Optional[Cue]:
    if "#EXT-X-SCTE35" in line:
        return Cue(CueKind.SCTE35, raw_payload=_payload(line))
    return None


def _match_daterange(line: str) -> Optional[Cue]:
    if line.startswith("#EXT-X-DATERANGE") and "SCTE35" in line:
        return Cue(CueKind.DATERANGE, raw_payload=_payload(line))
    return None


def _match_cue_out(line: str) -> Optional[Cue]:
    if "#EXT-X-CUE-OUT" in line:
        return Cue(CueKind.CUE_OUT, duration_seconds=_parse_duration(line),
                   raw_payload=_payload(line))
    return None


def _match_cue_in(line: str) -> Optional[Cue]:
    if "#EXT-X-CUE-IN" in line:
        return Cue(CueKind.CUE_IN)
    return None


MATCHERS: Tuple[Callable[[str], Optional[Cue]], ...] = (
    _match_scte35,
    _match_daterange,
    _match_cue_out,
    _match_cue_in,
)


def classify(line: str) -> Optional[Cue]:
    """Return the cue a single manifest line represents, or None."""
    if not line or not isinstance(line, str):
        return None
    for matcher in MATCHERS:
        cue = matcher(line)
        if cue is not None:
            return cue
    return None


def classify_all(lines: List[str]) -> List[Cue]:
    """Cues found in a sequence of lines, in document order."""
    return [cue for cue in (classify(line) for line in lines) if cue is not None]
