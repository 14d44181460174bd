"""
Per-session relay health tracking.

A monitor belongs to exactly one player session. It counts consecutive
failures of the relay in use and, once the threshold is reached, searches
for an alternative without the retry delay used during initial selection.
"""

import inspect
import logging
from typing import Callable, Optional

from config import settings
from proxy_failover import ProxyProber
from proxy_registry import ProxyEndpoint, ProxyRegistry, proxy_registry

logger = logging.getLogger(__name__)


class ProxyHealthMonitor:
    def __init__(self, prober: ProxyProber, registry: Optional[ProxyRegistry] = None,
                 failure_threshold: Optional[int] = None,
                 on_proxy_change: Optional[Callable] = None):
        self.prober = prober
        self.registry = registry or proxy_registry
        self.failure_threshold = failure_threshold or settings.HEALTH_FAILURE_THRESHOLD
        self.on_proxy_change = on_proxy_change
        self.current_endpoint: Optional[ProxyEndpoint] = None
        self.failure_count = 0

    def set_current_endpoint(self, endpoint: ProxyEndpoint):
        self.current_endpoint = endpoint
        self.failure_count = 0

    def report_success(self):
        self.failure_count = 0

    def report_failure(self) -> bool:
        """Record a failure; True once the relay should be replaced."""
        self.failure_count += 1
        name = self.current_endpoint.name if self.current_endpoint else "no relay"
        logger.warning(f"Failure {self.failure_count}/{self.failure_threshold} for {name}")
        return self.should_switch_proxy()

    def should_switch_proxy(self) -> bool:
        return self.failure_count >= self.failure_threshold

    async def find_alternative(self, channel: str,
                               exclude: Optional[ProxyEndpoint] = None) -> Optional[ProxyEndpoint]:
        """Probe every other relay once, in priority order, and adopt the first that works."""
        candidates = [e for e in self.registry.endpoints
                      if exclude is None or e.name != exclude.name]

        for endpoint in candidates:
            attempt = await self.prober.probe(endpoint, channel)
            if not attempt.success:
                logger.debug(f"Alternative {endpoint.name} unavailable: {attempt.error_message}")
                continue

            previous = self.current_endpoint
            self.set_current_endpoint(endpoint)
            logger.info(
                f"Switched {channel} from {previous.name if previous else 'none'} to {endpoint.name}")
            await self._notify(endpoint)
            return endpoint

        logger.error(f"No alternative relay available for {channel}")
        return None

    async def _notify(self, endpoint: ProxyEndpoint):
        if not self.on_proxy_change:
            return
        try:
            if inspect.iscoroutinefunction(self.on_proxy_change):
                await self.on_proxy_change(endpoint)
            else:
                self.on_proxy_change(endpoint)
        except Exception as e:
            logger.error(f"Error in proxy change handler: {e}")
