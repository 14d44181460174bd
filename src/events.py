"""
Session event bus.

Session and failover events are queued, handed to in-process handlers and
delivered to webhooks. Each event type delivers a fixed set of data keys, so
a webhook consumer sees the same payload shape for every proxy switch or
exhausted failover regardless of what the emitter attached.
"""

import asyncio
import inspect
import logging
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

import aiohttp

from models import EventType, SessionEvent, WebhookConfig

logger = logging.getLogger(__name__)

WEBHOOK_USER_AGENT = "HLS-Failover-Proxy-Webhook/1.0"

# Events kept per live session for GET /api/sessions/{id}/events
SESSION_HISTORY_SIZE = 50

EVENT_DATA_KEYS: Dict[EventType, Tuple[str, ...]] = {
    EventType.SESSION_STARTED: ("endpoint", "attempts"),
    EventType.PROXY_SELECTED: ("endpoint", "stream_url"),
    EventType.PROXY_SWITCHED: ("old_endpoint", "new_endpoint", "stream_url", "switch_count"),
    # creation-time exhaustion carries attempts/error, a mid-session trip endpoint/failure_count
    EventType.FAILOVER_EXHAUSTED: ("attempts", "error", "endpoint", "failure_count"),
    EventType.SESSION_ENDED: ("switch_count",),
}


def webhook_payload(event: SessionEvent) -> dict:
    """JSON body posted to webhooks; `data` is narrowed to the keys of its event type."""
    keys = EVENT_DATA_KEYS.get(event.event_type, ())
    return {
        "event_id": event.event_id,
        "event_type": event.event_type.value,
        "session_id": event.session_id,
        "channel": event.channel,
        "timestamp": event.timestamp.isoformat(),
        "data": {key: event.data[key] for key in keys if key in event.data},
    }


def webhook_accepts(webhook: WebhookConfig, event: SessionEvent) -> bool:
    if event.event_type not in webhook.events:
        return False
    return not webhook.channels or event.channel in webhook.channels


class EventManager:
    def __init__(self):
        self.webhooks: List[WebhookConfig] = []
        self.event_queue: asyncio.Queue = asyncio.Queue()
        self.event_handlers: List[Callable] = []
        self.history: Dict[str, Deque[SessionEvent]] = {}
        self.counts: Dict[str, int] = {event_type.value: 0 for event_type in EventType}
        self._http: Optional[aiohttp.ClientSession] = None
        self._worker_task: Optional[asyncio.Task] = None

    async def start(self):
        if self._worker_task:
            return
        self._http = aiohttp.ClientSession(headers={"User-Agent": WEBHOOK_USER_AGENT})
        self._worker_task = asyncio.create_task(self._process_events())
        logger.info("Event manager started")

    async def stop(self):
        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None
        if self._http:
            await self._http.close()
            self._http = None
        logger.info("Event manager stopped")

    def add_webhook(self, webhook: WebhookConfig):
        self.remove_webhook(str(webhook.url))
        self.webhooks.append(webhook)
        logger.info(f"Added webhook {webhook.url} for {[e.value for e in webhook.events]}")

    def remove_webhook(self, url: str) -> bool:
        before = len(self.webhooks)
        self.webhooks = [wh for wh in self.webhooks if str(wh.url) != url]
        return len(self.webhooks) != before

    def add_handler(self, handler: Callable):
        self.event_handlers.append(handler)

    def events_for_session(self, session_id: str) -> List[SessionEvent]:
        return list(self.history.get(session_id, ()))

    async def emit_event(self, event: SessionEvent):
        """Record the event against its session and queue it for delivery."""
        self._record(event)
        await self.event_queue.put(event)

    def _record(self, event: SessionEvent):
        self.counts[event.event_type.value] += 1
        if not event.session_id:
            return
        if event.event_type is EventType.SESSION_ENDED:
            self.history.pop(event.session_id, None)
            return
        self.history.setdefault(
            event.session_id, deque(maxlen=SESSION_HISTORY_SIZE)).append(event)

    async def _process_events(self):
        # One worker keeps each session's events in emission order
        while True:
            event = await self.event_queue.get()
            try:
                await self._handle_event(event)
            finally:
                self.event_queue.task_done()

    async def _handle_event(self, event: SessionEvent):
        for handler in list(self.event_handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Event handler {getattr(handler, '__name__', handler)} failed on "
                    f"{event.event_type.value}: {e}")

        await self._send_webhooks(event)

    async def _send_webhooks(self, event: SessionEvent):
        targets = [wh for wh in self.webhooks if webhook_accepts(wh, event)]
        if not targets:
            return
        payload = webhook_payload(event)
        await asyncio.gather(*(self._deliver(wh, payload) for wh in targets))

    async def _deliver(self, webhook: WebhookConfig, payload: dict) -> bool:
        """Post with exponential backoff; a 4xx other than 429 is final."""
        delay = 1
        for attempt in range(webhook.retry_attempts + 1):
            if attempt:
                await asyncio.sleep(delay)
                delay *= 2
            status = await self._post(webhook, payload)
            if status is not None and status < 400:
                return True
            if status is not None and status < 500 and status != 429:
                logger.warning(
                    f"Webhook {webhook.url} rejected {payload['event_type']} with HTTP {status}")
                return False

        logger.error(
            f"Webhook {webhook.url} gave up on {payload['event_type']} for session "
            f"{payload['session_id']} after {webhook.retry_attempts + 1} attempts")
        return False

    async def _post(self, webhook: WebhookConfig, payload: dict) -> Optional[int]:
        http = self._http
        owned = http is None
        if owned:
            http = aiohttp.ClientSession(headers={"User-Agent": WEBHOOK_USER_AGENT})
        try:
            async with http.post(
                str(webhook.url),
                json=payload,
                headers=webhook.headers,
                timeout=aiohttp.ClientTimeout(total=webhook.timeout),
            ) as response:
                return response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Webhook {webhook.url} unreachable: {e}")
            return None
        finally:
            if owned:
                await http.close()
