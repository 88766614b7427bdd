"""Push-event feed — server status events delivered to in-process subscribers.

Provides:
- EventFeed: handle-based subscriber registry; ``publish`` awaits every
  handler in subscription order.
- SSEEventSource: async consumer loop that reads the server's
  ``text/event-stream`` and publishes each event into an EventFeed,
  reconnecting with exponential backoff when the stream drops.

The feed is unreliable by nature: events can be missed while the stream is
reconnecting, which is why consumers pair it with a timeout.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable

import httpx
from pydantic import ValidationError

from pipeline_wizard.config import WizardConfig
from pipeline_wizard.models import PipelineEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[PipelineEvent], Awaitable[None]]


class EventFeed:
    """In-process push-event feed."""

    def __init__(self) -> None:
        self._handlers: dict[str, EventHandler] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: EventHandler) -> str:
        """Register a handler and return its subscription handle."""
        handle = uuid.uuid4().hex
        self._handlers[handle] = handler
        logger.debug("Event feed subscriber added: %s", handle)
        return handle

    def unsubscribe(self, handle: str) -> bool:
        """Remove a subscription. Unknown handles are ignored."""
        removed = self._handlers.pop(handle, None) is not None
        if removed:
            logger.debug("Event feed subscriber removed: %s", handle)
        return removed

    async def publish(self, event: PipelineEvent) -> None:
        """Deliver ``event`` to every current subscriber.

        A handler unsubscribed by an earlier handler during the same publish
        is skipped. Handler errors are logged, never propagated.
        """
        for handle, handler in list(self._handlers.items()):
            if handle not in self._handlers:
                continue
            try:
                await handler(event)
            except Exception:
                logger.exception("Event handler error for %s", event.target_url)


class SSEEventSource:
    """Streams server-sent events into an :class:`EventFeed`."""

    def __init__(
        self,
        feed: EventFeed,
        config: WizardConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ):
        self.feed = feed
        self.url = config.server.sse_url
        self.reconnect_delay = config.timing.reconnect_delay
        self.max_reconnect_delay = config.timing.max_reconnect_delay
        self._timeout = config.server.request_timeout

        self._client = client
        self._owns_client = client is None
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the stream consumer loop."""
        if self._client is None:
            # No read timeout: the stream stays open between events.
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, read=None),
                headers={"User-Agent": "pipeline-wizard/0.1.0"},
            )
        self._running = True
        self._task = asyncio.create_task(self._consumer_loop(), name="sse-event-source")
        logger.info("Event stream consumer started (%s)", self.url)

    async def stop(self) -> None:
        """Stop the consumer loop and close the connection."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
        logger.info("Event stream consumer stopped")

    async def _consumer_loop(self) -> None:
        """Read the stream, reconnecting after disconnects."""
        delay = self.reconnect_delay
        while self._running:
            try:
                await self.stream_once()
                delay = self.reconnect_delay
                logger.info("Event stream closed by server")
            except asyncio.CancelledError:
                break
            except httpx.HTTPError as e:
                logger.warning("Event stream error: %s — reconnecting in %.1fs", e, delay)

            if not self._running:
                break
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                break
            delay = min(delay * 2, self.max_reconnect_delay)

    async def stream_once(self) -> int:
        """Consume one connection until the server closes it.

        Returns the number of events published.
        """
        if self._client is None:
            raise RuntimeError("Event stream consumer not started")

        published = 0
        data_lines: list[str] = []
        async with self._client.stream(
            "GET", self.url, headers={"Accept": "text/event-stream"}
        ) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                if not line:
                    # Blank line terminates an event
                    if data_lines:
                        published += await self._dispatch("\n".join(data_lines))
                        data_lines = []
                    continue
                if line.startswith(":"):
                    continue  # comment / keep-alive
                field, _, value = line.partition(":")
                if value.startswith(" "):
                    value = value[1:]
                if field == "data":
                    data_lines.append(value)

        if data_lines:
            published += await self._dispatch("\n".join(data_lines))
        return published

    async def _dispatch(self, data: str) -> int:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON event data: %.100s", data)
            return 0
        if not isinstance(payload, dict):
            return 0

        try:
            event = PipelineEvent.model_validate(payload)
        except ValidationError:
            logger.debug("Ignoring malformed event: %.200s", data)
            return 0

        await self.feed.publish(event)
        return 1
