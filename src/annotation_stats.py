"""Summaries of rewritten manifests, for diagnostics and tests."""

from dataclasses import asdict, dataclass

_ANNOTATION_MARKER = "annot=cue-detected"


@dataclass
class AnnotationStats:
    cue_count: int = 0
    scte35_count: int = 0
    cue_out_count: int = 0
    cue_in_count: int = 0
    date_range_count: int = 0
    discontinuities: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def summarize(manifest: str) -> AnnotationStats:
    stats = AnnotationStats()
    for line in (manifest or "").split("\n"):
        if _ANNOTATION_MARKER in line:
            stats.cue_count += 1
            kind = line.split("type=", 1)[-1].split(",", 1)[0].strip()
            if kind == "SCTE35":
                stats.scte35_count += 1
            elif kind == "CUE_OUT":
                stats.cue_out_count += 1
            elif kind == "CUE_IN":
                stats.cue_in_count += 1
            elif kind == "DATERANGE":
                stats.date_range_count += 1

        # EXT-X-DISCONTINUITY-SEQUENCE is a different tag
        if line.strip() == "#EXT-X-DISCONTINUITY":
            stats.discontinuities += 1
    return stats
