"""
M3U8 SSAI cue annotator and rewriter.

Default mode annotates ad-insertion cues with EXT-X-COMMENT lines and leaves
every original line in place. Skip mode drops the EXTINF/URI pairs covered by
a timed CUE-OUT and inserts a single discontinuity once the run completes.
In both modes each segment URI is rewritten to route back through /api/hls.
"""

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
from urllib.parse import quote, urljoin, urlparse

from config import settings
from cue_matcher import Cue, CueKind, classify

logger = logging.getLogger(__name__)

HLS_ROUTE = "/api/hls"
DEFAULT_TARGET_DURATION = 2

_TARGET_DURATION_RE = re.compile(r"#EXT-X-TARGETDURATION:(\d+)")

DISCONTINUITY = "#EXT-X-DISCONTINUITY"
COMMENT_SKIP_END = "#EXT-X-COMMENT:skip-end"
COMMENT_DISCONTINUITY_INSERTED = "#EXT-X-COMMENT:skip-discontinuity-inserted"


class RewriteMode(str, Enum):
    ANNOTATE = "annotate"
    SKIP = "skip"


def configured_mode() -> RewriteMode:
    return RewriteMode.SKIP if settings.DEV_SKIP_ENABLED else RewriteMode.ANNOTATE


def proxied_url(absolute_url: str) -> str:
    """Rewrites a URL to point to the proxy, encoding the original URL."""
    return f"{HLS_ROUTE}?src={quote(absolute_url, safe='')}"


def annotation_line(cue: Cue) -> str:
    line = f"#EXT-X-COMMENT:annot=cue-detected,type={cue.kind.value}"
    if cue.kind is CueKind.CUE_OUT and cue.duration_seconds is not None:
        line += f",duration={math.floor(cue.duration_seconds)}"
    return line


def skip_start_line(segments: int) -> str:
    return f"#EXT-X-COMMENT:skip-start,segments={segments}"


class LineCursor:
    """Forward iterator over manifest lines that can also consume the next line."""

    def __init__(self, lines: List[str]):
        self._lines = lines
        self._pos = 0

    def __iter__(self):
        return self

    def __next__(self) -> str:
        if self._pos >= len(self._lines):
            raise StopIteration
        line = self._lines[self._pos]
        self._pos += 1
        return line

    def peek(self) -> Optional[str]:
        if self._pos >= len(self._lines):
            return None
        return self._lines[self._pos]

    def consume(self) -> Optional[str]:
        line = self.peek()
        if line is not None:
            self._pos += 1
        return line


@dataclass
class RewriteState:
    target_duration: int = DEFAULT_TARGET_DURATION
    segments_remaining: int = 0
    in_ad_break: bool = False
    cues_seen: int = 0
    segments_skipped: int = 0

    def start_skip(self, duration_seconds: float) -> int:
        self.segments_remaining = math.ceil(duration_seconds / self.target_duration)
        self.in_ad_break = True
        return self.segments_remaining

    def reset(self):
        self.segments_remaining = 0
        self.in_ad_break = False


class ManifestRewriter:
    def __init__(self, base_url: str, mode: Optional[RewriteMode] = None):
        self.base_url = base_url
        self.mode = mode or configured_mode()

    @property
    def skipping(self) -> bool:
        return self.mode is RewriteMode.SKIP

    def rewrite(self, manifest: str) -> str:
        """Process M3U8 text line by line; never raises on malformed input."""
        if not manifest:
            return ""

        state = RewriteState()
        result: List[str] = []
        cursor = LineCursor(manifest.split("\n"))

        for raw_line in cursor:
            line = raw_line.strip()

            # Always preserve M3U8 header
            if line.startswith("#EXTM3U"):
                result.append(line)
                continue

            if line.startswith("#EXT-X-TARGETDURATION:"):
                self._update_target_duration(line, state)
                result.append(line)
                continue

            cue = classify(line)
            if cue is not None:
                state.cues_seen += 1
                self._handle_cue(cue, line, state, result)
                continue

            if self.skipping and state.segments_remaining > 0 and line.startswith("#EXTINF:"):
                # EXTINF and the segment URI that follows it leave together
                cursor.consume()
                state.segments_remaining -= 1
                state.segments_skipped += 1
                if state.segments_remaining == 0:
                    result.append(DISCONTINUITY)
                    result.append(COMMENT_DISCONTINUITY_INSERTED)
                continue

            if line and not line.startswith("#"):
                result.append(self._rewrite_uri(line))
            else:
                result.append(line)

        if state.cues_seen:
            logger.debug(
                f"Rewrote manifest from {self.base_url} ({self.mode.value}): "
                f"{state.cues_seen} cues, {state.segments_skipped} segments skipped, "
                f"in_ad_break={state.in_ad_break}")

        return "\n".join(result)

    def _update_target_duration(self, line: str, state: RewriteState):
        match = _TARGET_DURATION_RE.match(line)
        if match:
            value = int(match.group(1))
            if value > 0:
                state.target_duration = value

    def _handle_cue(self, cue: Cue, line: str, state: RewriteState, result: List[str]):
        result.append(annotation_line(cue))

        if not self.skipping:
            if cue.kind is CueKind.CUE_IN:
                state.reset()
            result.append(line)
            return

        # SCTE35 and CUE-* lines never survive skip mode; DATERANGE passes through
        if cue.kind is CueKind.DATERANGE:
            result.append(line)
        elif cue.kind is CueKind.CUE_OUT and cue.duration_seconds and cue.duration_seconds > 0:
            segments = state.start_skip(cue.duration_seconds)
            result.append(skip_start_line(segments))
        elif cue.kind is CueKind.CUE_IN:
            state.reset()
            result.append(COMMENT_SKIP_END)

    def _rewrite_uri(self, line: str) -> str:
        try:
            absolute_url = urljoin(self.base_url, line)
            parsed = urlparse(absolute_url)
        except (ValueError, TypeError) as e:
            logger.debug(f"Leaving unresolvable URI unchanged: {line!r} ({e})")
            return line
        if not parsed.scheme or not parsed.netloc:
            return line
        return proxied_url(absolute_url)


def rewrite_manifest(manifest: str, base_url: str, mode: Optional[RewriteMode] = None) -> str:
    """Rewrite a manifest; the mode defaults to the DEV_SKIP_ENABLED setting."""
    return ManifestRewriter(base_url, mode).rewrite(manifest)
