"""
Tests for rewritten-manifest summaries
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from annotation_stats import AnnotationStats, summarize
from manifest_rewriter import RewriteMode, rewrite_manifest

BASE_URL = "https://relay.example.com/live/chan/index.m3u8"

MOCK_MANIFEST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:2
#EXTINF:2.0,
segment1.ts
#EXT-X-SCTE35:CUE=/DAlAAAAAAAAAP/wFAUAAAAB
#EXT-X-CUE-OUT:DURATION=4.0
#EXTINF:2.0,
ad-segment1.ts
#EXTINF:2.0,
ad-segment2.ts
#EXT-X-CUE-IN
#EXTINF:2.0,
segment2.ts"""


class TestAnnotationStats:
    def test_counts_annotations_in_annotate_mode(self):
        stats = summarize(rewrite_manifest(MOCK_MANIFEST, BASE_URL, RewriteMode.ANNOTATE))
        assert stats == AnnotationStats(
            cue_count=3,
            scte35_count=1,
            cue_out_count=1,
            cue_in_count=1,
            date_range_count=0,
            discontinuities=0,
        )

    def test_counts_discontinuity_in_skip_mode(self):
        stats = summarize(rewrite_manifest(MOCK_MANIFEST, BASE_URL, RewriteMode.SKIP))
        assert stats.cue_count == 3
        assert stats.discontinuities == 1

    def test_daterange(self):
        stats = summarize("#EXT-X-COMMENT:annot=cue-detected,type=DATERANGE")
        assert stats.date_range_count == 1
        assert stats.cue_count == 1

    def test_discontinuity_sequence_not_counted(self):
        stats = summarize("#EXTM3U\n#EXT-X-DISCONTINUITY-SEQUENCE:4\n#EXT-X-DISCONTINUITY")
        assert stats.discontinuities == 1

    def test_original_cue_lines_are_not_annotations(self):
        assert summarize(MOCK_MANIFEST).cue_count == 0

    def test_empty(self):
        assert summarize("") == AnnotationStats()
        assert summarize(None) == AnnotationStats()

    def test_input_not_modified(self):
        text = rewrite_manifest(MOCK_MANIFEST, BASE_URL, RewriteMode.SKIP)
        copy = str(text)
        summarize(text)
        assert text == copy

    def test_to_dict(self):
        data = summarize("#EXT-X-COMMENT:annot=cue-detected,type=CUE_OUT,duration=30").to_dict()
        assert data["cue_out_count"] == 1
        assert set(data) == {
            "cue_count", "scte35_count", "cue_out_count",
            "cue_in_count", "date_range_count", "discontinuities",
        }
