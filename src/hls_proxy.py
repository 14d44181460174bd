"""
Upstream fetching for the /api/hls route.

Playlists are run through the manifest rewriter so every segment URI routes
back through the proxy; anything else is relayed unchanged.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx
import m3u8

from annotation_stats import summarize
from config import settings
from cue_matcher import classify_all
from manifest_rewriter import rewrite_manifest

logger = logging.getLogger(__name__)

PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"


class UpstreamError(Exception):
    """Upstream could not be fetched or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class UpstreamResponse:
    content: bytes
    content_type: str
    final_url: str
    status_code: int = 200

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    @property
    def is_playlist(self) -> bool:
        content_type = self.content_type.lower()
        if "mpegurl" in content_type:
            return True
        if urlparse(self.final_url).path.lower().endswith(".m3u8"):
            return True
        return self.content[:16].lstrip().startswith(b"#EXTM3U")


class HLSProxy:
    def __init__(self):
        # Optimized HTTP client with connection pooling
        self.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=settings.DEFAULT_CONNECTION_TIMEOUT,
                read=settings.DEFAULT_READ_TIMEOUT,
                write=10.0,
                pool=10.0
            ),
            follow_redirects=True,
            max_redirects=10,
            limits=httpx.Limits(
                max_keepalive_connections=20,
                max_connections=100,
                keepalive_expiry=30.0
            )
        )

    async def stop(self):
        await self.http_client.aclose()

    async def fetch(self, src: str) -> UpstreamResponse:
        headers = {
            'User-Agent': settings.DEFAULT_USER_AGENT,
            'Accept': f'{PLAYLIST_CONTENT_TYPE}, */*',
        }
        try:
            response = await self.http_client.get(src, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"HLS fetch failed for {src}: {e}")
            raise UpstreamError(str(e) or type(e).__name__)

        if not response.is_success:
            logger.error(f"HLS fetch failed: {response.status_code} {response.reason_phrase}")
            raise UpstreamError(
                f"HTTP {response.status_code}: {response.reason_phrase}", response.status_code)

        return UpstreamResponse(
            content=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
            final_url=str(response.url),
            status_code=response.status_code,
        )

    async def inspect(self, src: str) -> dict:
        upstream = await self.fetch(src)
        original = upstream.text
        rewritten = rewrite_manifest(original, upstream.final_url)

        playlist_info = None
        try:
            playlist = m3u8.loads(original, uri=upstream.final_url)
            playlist_info = {
                "is_variant": playlist.is_variant,
                "variant_count": len(playlist.playlists),
                "segment_count": len(playlist.segments),
                "target_duration": playlist.target_duration,
                "media_sequence": playlist.media_sequence,
                "is_endlist": playlist.is_endlist,
            }
        except Exception as e:
            logger.warning(f"Could not parse playlist from {src}: {e}")

        return {
            "src": src,
            "final_url": upstream.final_url,
            "cues": [
                {"kind": cue.kind.value, "duration": cue.duration_seconds}
                for cue in classify_all([line.strip() for line in original.split("\n")])
            ],
            "stats": summarize(rewritten).to_dict(),
            "playlist": playlist_info,
        }
