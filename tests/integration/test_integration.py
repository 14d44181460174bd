import pytest
import pytest_asyncio
import httpx
from unittest.mock import patch
from urllib.parse import urlparse

# Add src to path
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

import api
from api import app
from config import settings
from hls_proxy import UpstreamError, UpstreamResponse
from health_monitor import ProxyHealthMonitor
from proxy_failover import FailoverEngine, ProxyProber
from proxy_registry import proxy_registry

RELAY_PLAYLIST = b"""#EXTM3U
#EXT-X-TARGETDURATION:2
#EXTINF:2.0,
seg1.ts
#EXT-X-CUE-OUT:DURATION=4.0
#EXTINF:2.0,
ad1.ts
#EXTINF:2.0,
ad2.ts
#EXT-X-CUE-IN
#EXTINF:2.0,
seg2.ts
"""


class FakeRelays:
    """Upstream fetch double: hosts listed in `down` answer with an upstream error."""

    def __init__(self, down=()):
        self.down = set(down)
        self.requested = []

    async def __call__(self, src):
        host = urlparse(src).hostname
        self.requested.append(host)
        if host in self.down:
            raise UpstreamError("HTTP 503: Service Unavailable", 503)
        return UpstreamResponse(
            content=RELAY_PLAYLIST,
            content_type="application/vnd.apple.mpegurl",
            final_url=src,
        )


@pytest.mark.integration
class TestFailoverThroughLocalRoute:
    """Probes travel through the app's own /api/hls route, as in production"""

    @pytest.fixture
    def relays(self, monkeypatch):
        monkeypatch.setattr(settings, "API_TOKEN", None)
        monkeypatch.setattr(settings, "DEV_SKIP_ENABLED", False)
        fake = FakeRelays()
        with patch.object(api.hls_proxy, "fetch", new=fake):
            yield fake

    @pytest_asyncio.fixture
    async def http_client(self):
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app),
                                     base_url="http://testserver") as client:
            yield client

    @pytest.fixture
    def prober(self, http_client):
        return ProxyProber(http_client=http_client, local_proxy_url="http://testserver")

    @pytest.mark.asyncio
    async def test_falls_over_to_first_healthy_relay(self, relays, prober):
        relays.down.update({"eu.luminous.dev", "as.luminous.dev"})
        engine = FailoverEngine(prober, proxy_registry, retry_delay_ms=0)

        outcome = await engine.find_working("somechannel", max_attempts=3)

        assert outcome.success
        assert [a.endpoint.name for a in outcome.attempts] == \
            ["Luminous EU", "Luminous Asia", "PerfProd EU"]
        assert outcome.attempts[0].error_message == "HTTP 502: Bad Gateway"
        assert relays.requested == ["eu.luminous.dev", "as.luminous.dev", "lb-eu.cdn-perfprod.com"]

    @pytest.mark.asyncio
    async def test_all_relays_down(self, relays, prober):
        relays.down.update(e.base_host for e in proxy_registry)
        engine = FailoverEngine(prober, proxy_registry, retry_delay_ms=0)

        outcome = await engine.find_working("somechannel", max_attempts=10)

        assert not outcome.success
        assert len(outcome.attempts) == len(proxy_registry)

    @pytest.mark.asyncio
    async def test_monitor_switches_after_threshold(self, relays, prober):
        monitor = ProxyHealthMonitor(prober, proxy_registry)
        monitor.set_current_endpoint(proxy_registry.get("Luminous EU"))
        relays.down.add("eu.luminous.dev")

        tripped = [monitor.report_failure() for _ in range(3)]
        alternative = await monitor.find_alternative("somechannel", exclude=proxy_registry.get("Luminous EU"))

        assert tripped == [False, False, True]
        assert alternative.name == "Luminous Asia"
        assert "eu.luminous.dev" not in relays.requested

    @pytest.mark.asyncio
    async def test_selected_stream_plays_back_rewritten(self, relays, prober, http_client):
        engine = FailoverEngine(prober, proxy_registry, retry_delay_ms=0)
        outcome = await engine.find_working("somechannel")

        response = await http_client.get(outcome.proxied_stream_url)

        assert response.status_code == 200
        body = response.text
        assert body.startswith("#EXTM3U")
        assert "annot=cue-detected,type=CUE_OUT,duration=4" in body
        assert "/api/hls?src=https%3A%2F%2Feu.luminous.dev%2Flive%2Fseg1.ts" in body
