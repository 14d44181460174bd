"""
Relay endpoint catalog.

Each endpoint serves ad-free playlists for a channel. Endpoints are tried in
ascending priority order. The host allow-list guards /api/hls against being
used as an open proxy.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional
from urllib.parse import quote, urlparse

from config import settings


@dataclass(frozen=True)
class ProxyEndpoint:
    name: str
    base_host: str
    region: str
    priority: int
    # "{channel}" is replaced with the percent-encoded channel name
    playlist_template: str

    @property
    def base_url(self) -> str:
        return f"https://{self.base_host}"

    def build_playlist_url(self, channel: str) -> str:
        return self.playlist_template.format(channel=quote(channel, safe=''))

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "base_url": self.base_url,
            "region": self.region,
            "priority": self.priority,
        }


_LUMINOUS_QUERY = "allow_source=true&allow_audio_only=true&fast_bread=true"

PROXY_ENDPOINTS: List[ProxyEndpoint] = [
    ProxyEndpoint("Luminous EU", "eu.luminous.dev", "Europe", 1,
                  "https://eu.luminous.dev/live/{channel}?" + _LUMINOUS_QUERY),
    ProxyEndpoint("Luminous Asia", "as.luminous.dev", "Asia", 2,
                  "https://as.luminous.dev/live/{channel}?" + _LUMINOUS_QUERY),
    ProxyEndpoint("PerfProd EU", "lb-eu.cdn-perfprod.com", "Europe", 3,
                  "https://lb-eu.cdn-perfprod.com/playlist/{channel}.m3u8"),
    ProxyEndpoint("PerfProd NA", "lb-na.cdn-perfprod.com", "North America", 4,
                  "https://lb-na.cdn-perfprod.com/playlist/{channel}.m3u8"),
    ProxyEndpoint("PerfProd Asia", "lb-as.cdn-perfprod.com", "Asia", 5,
                  "https://lb-as.cdn-perfprod.com/playlist/{channel}.m3u8"),
    ProxyEndpoint("PerfProd EU2", "lb-eu2.cdn-perfprod.com", "Europe", 6,
                  "https://lb-eu2.cdn-perfprod.com/playlist/{channel}.m3u8"),
]

PROXY_ALLOWED_HOSTS: List[str] = [
    "eu.luminous.dev",
    "as.luminous.dev",
    "bg.luminous.dev",
    "lb-eu.cdn-perfprod.com",
    "lb-eu2.cdn-perfprod.com",
    "lb-eu3.cdn-perfprod.com",
    "lb-eu4.cdn-perfprod.com",
    "lb-eu5.cdn-perfprod.com",
    "lb-na.cdn-perfprod.com",
    "lb-as.cdn-perfprod.com",
    "lb-sa.cdn-perfprod.com",
    "twitch.nadeko.net",
]

AUTO = "auto"


class ProxyRegistry:
    def __init__(self, endpoints: Optional[Iterable[ProxyEndpoint]] = None,
                 allowed_hosts: Optional[Iterable[str]] = None):
        endpoints = list(PROXY_ENDPOINTS if endpoints is None else endpoints)
        if not endpoints:
            raise ValueError("Proxy registry requires at least one endpoint")

        names = [e.name for e in endpoints]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate proxy endpoint names: {', '.join(duplicates)}")

        # sorted() is stable, so equal priorities keep catalog order
        self._endpoints = sorted(endpoints, key=lambda e: e.priority)
        hosts = PROXY_ALLOWED_HOSTS if allowed_hosts is None else allowed_hosts
        self._allowed_hosts = {h.lower() for h in hosts}
        self._allowed_hosts.update(e.base_host.lower() for e in self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    def __iter__(self):
        return iter(self._endpoints)

    @property
    def endpoints(self) -> List[ProxyEndpoint]:
        """Endpoints in ascending priority order."""
        return list(self._endpoints)

    def names(self) -> List[str]:
        return [e.name for e in self._endpoints]

    def get(self, name: Optional[str]) -> Optional[ProxyEndpoint]:
        if not name:
            return None
        for endpoint in self._endpoints:
            if endpoint.name == name:
                return endpoint
        return None

    def candidates(self, preferred_name: Optional[str] = None) -> List[ProxyEndpoint]:
        """Priority order, with a known non-"auto" preferred endpoint moved to the front."""
        ordered = self.endpoints
        if preferred_name and preferred_name != AUTO:
            preferred = self.get(preferred_name)
            if preferred is not None:
                ordered = [preferred] + [e for e in ordered if e.name != preferred.name]
        return ordered

    def is_allowed_host(self, hostname: Optional[str]) -> bool:
        if not hostname:
            return False
        hostname = hostname.lower().rstrip(".")
        allowed = self._allowed_hosts.union(settings.extra_allowed_hosts)
        return any(hostname == domain or hostname.endswith("." + domain) for domain in allowed)

    def is_allowed_url(self, url: str) -> bool:
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        if parsed.scheme not in ("http", "https"):
            return False
        if settings.HTTPS_ONLY and parsed.scheme != "https":
            return False
        return self.is_allowed_host(parsed.hostname)


# Global registry instance
proxy_registry = ProxyRegistry()
