"""
Player session tracking.

Each session owns its own ProxyHealthMonitor so that failure counts for one
channel never leak into another. Sessions are created only once a working
relay has been found.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from config import settings
from health_monitor import ProxyHealthMonitor
from manifest_rewriter import proxied_url
from proxy_failover import FailoverEngine, FailoverOutcome, ProxyProber
from proxy_registry import ProxyEndpoint

logger = logging.getLogger(__name__)


@dataclass
class PlayerSession:
    session_id: str
    channel: str
    monitor: ProxyHealthMonitor
    preferred_proxy: str = "auto"
    stream_url: Optional[str] = None
    switch_count: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_access: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def current_endpoint(self) -> Optional[ProxyEndpoint]:
        return self.monitor.current_endpoint

    def touch(self):
        self.last_access = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        endpoint = self.current_endpoint
        return {
            "session_id": self.session_id,
            "channel": self.channel,
            "preferred_proxy": self.preferred_proxy,
            "endpoint": endpoint.to_dict() if endpoint else None,
            "stream_url": self.stream_url,
            "failure_count": self.monitor.failure_count,
            "failure_threshold": self.monitor.failure_threshold,
            "switch_count": self.switch_count,
            "created_at": self.created_at.isoformat(),
            "last_access": self.last_access.isoformat(),
        }


class SessionManager:
    def __init__(self, engine: FailoverEngine, prober: ProxyProber):
        self.engine = engine
        self.prober = prober
        self.sessions: Dict[str, PlayerSession] = {}
        self.session_timeout = settings.SESSION_TIMEOUT
        self.event_manager = None
        self._cleanup_task: Optional[asyncio.Task] = None
        self._running = False

    def set_event_manager(self, event_manager):
        """Set the event manager for emitting events"""
        self.event_manager = event_manager

    async def _emit_event(self, event_type: str, channel: str,
                          session_id: Optional[str], data: dict):
        """Helper method to emit events if event manager is available"""
        if not self.event_manager:
            return
        try:
            from models import SessionEvent, EventType
            event = SessionEvent(
                event_type=getattr(EventType, event_type),
                session_id=session_id,
                channel=channel,
                data=data
            )
            await self.event_manager.emit_event(event)
        except Exception as e:
            logger.error(f"Error emitting event: {e}")

    async def start(self):
        self._running = True
        self._cleanup_task = asyncio.create_task(self._periodic_cleanup())
        logger.info("Session manager started")

    async def stop(self):
        self._running = False
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self.sessions.clear()
        logger.info("Session manager stopped")

    async def create_session(
        self,
        channel: str,
        preferred_proxy: str = "auto",
        max_attempts: Optional[int] = None
    ) -> Tuple[Optional[PlayerSession], FailoverOutcome]:
        """Select a relay for the channel and open a session on it.

        Returns (None, outcome) when every candidate relay failed.
        """
        outcome = await self.engine.find_working(channel, max_attempts, preferred_proxy)
        if not outcome.success:
            await self._emit_event("FAILOVER_EXHAUSTED", channel, None, {
                "attempts": [a.to_dict() for a in outcome.attempts],
                "error": outcome.error,
            })
            return None, outcome

        session_id = uuid.uuid4().hex
        monitor = ProxyHealthMonitor(self.prober, registry=self.engine.registry)
        monitor.set_current_endpoint(outcome.selected_endpoint)
        session = PlayerSession(
            session_id=session_id,
            channel=channel,
            monitor=monitor,
            preferred_proxy=preferred_proxy,
            stream_url=outcome.proxied_stream_url,
        )
        self.sessions[session_id] = session
        logger.info(
            f"Created session {session_id} for {channel} on {outcome.selected_endpoint.name}")

        await self._emit_event("SESSION_STARTED", channel, session_id, {
            "endpoint": outcome.selected_endpoint.name,
            "attempts": len(outcome.attempts),
        })
        await self._emit_event("PROXY_SELECTED", channel, session_id, {
            "endpoint": outcome.selected_endpoint.name,
            "stream_url": outcome.proxied_stream_url,
        })
        return session, outcome

    def get_session(self, session_id: str) -> Optional[PlayerSession]:
        session = self.sessions.get(session_id)
        if session:
            session.touch()
        return session

    async def report_success(self, session_id: str) -> Optional[PlayerSession]:
        session = self.get_session(session_id)
        if session:
            session.monitor.report_success()
        return session

    async def report_failure(self, session_id: str) -> Optional[dict]:
        """Feed a playback failure to the session's monitor, switching relays once it trips."""
        session = self.get_session(session_id)
        if session is None:
            return None

        monitor = session.monitor
        previous = monitor.current_endpoint
        if not monitor.report_failure():
            return {"switched": False, "session": session.to_dict()}

        alternative = await monitor.find_alternative(session.channel, exclude=previous)
        if alternative is None:
            await self._emit_event("FAILOVER_EXHAUSTED", session.channel, session_id, {
                "endpoint": previous.name if previous else None,
                "failure_count": monitor.failure_count,
            })
            return {"switched": False, "session": session.to_dict()}

        session.switch_count += 1
        session.stream_url = proxied_url(alternative.build_playlist_url(session.channel))
        await self._emit_event("PROXY_SWITCHED", session.channel, session_id, {
            "old_endpoint": previous.name if previous else None,
            "new_endpoint": alternative.name,
            "stream_url": session.stream_url,
            "switch_count": session.switch_count,
        })
        return {"switched": True, "session": session.to_dict()}

    async def close_session(self, session_id: str) -> bool:
        session = self.sessions.pop(session_id, None)
        if session is None:
            return False
        logger.info(f"Closed session {session_id} for {session.channel}")
        await self._emit_event("SESSION_ENDED", session.channel, session_id, {
            "switch_count": session.switch_count,
        })
        return True

    async def cleanup_idle_sessions(self) -> int:
        now = datetime.now(timezone.utc)
        expired = [
            session_id for session_id, session in self.sessions.items()
            if (now - session.last_access).total_seconds() > self.session_timeout
        ]
        for session_id in expired:
            await self.close_session(session_id)
        if expired:
            logger.info(f"Cleaned up {len(expired)} idle sessions")
        return len(expired)

    async def _periodic_cleanup(self):
        while self._running:
            try:
                await asyncio.sleep(settings.CLEANUP_INTERVAL)
                await self.cleanup_idle_sessions()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in session cleanup task: {e}")
