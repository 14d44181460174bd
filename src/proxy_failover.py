"""
Proxy Failover System

Implements automatic failover between multiple ad-free relay endpoints.
Relays are probed one at a time in priority order until one successfully
provides a playlist for the channel.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from config import settings
from manifest_rewriter import proxied_url
from proxy_registry import ProxyEndpoint, ProxyRegistry, proxy_registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProxyAttempt:
    endpoint: ProxyEndpoint
    success: bool
    response_time_ms: int
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "endpoint": self.endpoint.name,
            "region": self.endpoint.region,
            "success": self.success,
            "error": self.error_message,
            "response_time_ms": self.response_time_ms,
        }


@dataclass
class FailoverOutcome:
    success: bool
    attempts: List[ProxyAttempt] = field(default_factory=list)
    selected_endpoint: Optional[ProxyEndpoint] = None
    playlist_url: Optional[str] = None
    proxied_stream_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "endpoint": self.selected_endpoint.to_dict() if self.selected_endpoint else None,
            "playlist_url": self.playlist_url,
            "stream_url": self.proxied_stream_url,
            "attempts": [a.to_dict() for a in self.attempts],
            "error": self.error,
        }


class ProxyProber:
    """Checks whether a relay can serve a channel by HEAD-ing the local /api/hls route."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None,
                 local_proxy_url: Optional[str] = None,
                 timeout_ms: Optional[int] = None):
        self.local_proxy_url = (local_proxy_url or settings.LOCAL_PROXY_URL).rstrip('/')
        self.timeout_ms = timeout_ms if timeout_ms is not None else settings.PROXY_PROBE_TIMEOUT_MS
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            follow_redirects=True,
            limits=httpx.Limits(
                max_keepalive_connections=10,
                max_connections=20,
                keepalive_expiry=30.0
            )
        )

    async def aclose(self):
        if self._owns_client:
            await self.http_client.aclose()

    def probe_url(self, playlist_url: str) -> str:
        return f"{self.local_proxy_url}{settings.ROOT_PATH}{proxied_url(playlist_url)}"

    async def probe(self, endpoint: ProxyEndpoint, channel: str,
                    timeout_ms: Optional[int] = None) -> ProxyAttempt:
        """Probe one endpoint; every failure is reported in the returned attempt."""
        timeout_ms = timeout_ms if timeout_ms is not None else self.timeout_ms
        start = time.monotonic()

        def elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        try:
            url = self.probe_url(endpoint.build_playlist_url(channel))
            response = await asyncio.wait_for(
                self.http_client.head(url, timeout=timeout_ms / 1000),
                timeout=timeout_ms / 1000)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return ProxyAttempt(endpoint, False, elapsed(),
                                f"Timed out after {timeout_ms}ms")
        except httpx.HTTPError as e:
            return ProxyAttempt(endpoint, False, elapsed(), str(e) or type(e).__name__)
        except Exception as e:
            logger.error(f"Unexpected error probing {endpoint.name}: {e}")
            return ProxyAttempt(endpoint, False, elapsed(), str(e) or type(e).__name__)

        if response.is_success:
            return ProxyAttempt(endpoint, True, elapsed())
        return ProxyAttempt(endpoint, False, elapsed(),
                            f"HTTP {response.status_code}: {response.reason_phrase}")


class FailoverEngine:
    def __init__(self, prober: ProxyProber, registry: Optional[ProxyRegistry] = None,
                 retry_delay_ms: Optional[int] = None):
        self.prober = prober
        self.registry = registry or proxy_registry
        self.retry_delay_ms = retry_delay_ms if retry_delay_ms is not None else settings.PROXY_RETRY_DELAY_MS

    async def find_working(self, channel: str, max_attempts: Optional[int] = None,
                           preferred_endpoint_name: Optional[str] = None) -> FailoverOutcome:
        """
        Attempts to find a working relay for the given channel.

        Candidates are probed sequentially, stopping at the first success,
        with a fixed delay between a failed attempt and the next one.

        Args:
            channel: The channel name
            max_attempts: Maximum number of relays to try
            preferred_endpoint_name: Optional relay name to try first ("auto" = none)
        """
        if max_attempts is None:
            max_attempts = settings.PROXY_MAX_ATTEMPTS

        candidates = self.registry.candidates(preferred_endpoint_name)
        if candidates and preferred_endpoint_name and candidates[0].name == preferred_endpoint_name:
            logger.info(f"Preferred relay {preferred_endpoint_name} will be tried first")
        to_try = candidates[:max(max_attempts, 0)]
        attempts: List[ProxyAttempt] = []

        for index, endpoint in enumerate(to_try):
            logger.info(f"Trying {endpoint.name} ({endpoint.region}) for {channel}...")
            attempt = await self.prober.probe(endpoint, channel)
            attempts.append(attempt)

            if attempt.success:
                logger.info(f"✅ {endpoint.name} succeeded in {attempt.response_time_ms}ms")
                playlist_url = endpoint.build_playlist_url(channel)
                return FailoverOutcome(
                    success=True,
                    attempts=attempts,
                    selected_endpoint=endpoint,
                    playlist_url=playlist_url,
                    proxied_stream_url=proxied_url(playlist_url),
                )

            logger.warning(f"❌ {endpoint.name} failed: {attempt.error_message}")
            if index < len(to_try) - 1 and self.retry_delay_ms > 0:
                await asyncio.sleep(self.retry_delay_ms / 1000)

        logger.error(f"All {len(attempts)} relay attempts failed for {channel}")
        return FailoverOutcome(
            success=False,
            attempts=attempts,
            error=f"All proxy attempts failed. Tried {len(attempts)} proxies.",
        )


async def find_working_proxy(engine: FailoverEngine, channel: str,
                             max_attempts: Optional[int] = None,
                             preferred_proxy_name: Optional[str] = "auto") -> FailoverOutcome:
    return await engine.find_working(channel, max_attempts, preferred_proxy_name)


async def get_proxy_stream_url(engine: FailoverEngine, channel: str) -> Optional[str]:
    """Stream URL through the first working relay, or None when every relay fails."""
    outcome = await engine.find_working(channel)
    if outcome.success and outcome.proxied_stream_url:
        return outcome.proxied_stream_url
    return None

