"""
Live-activity relay for "metric recorded" / "achievement granted" notifications.

The scoring core only depends on the EventSink protocol; EventRelay is the
in-process implementation that fans events out to Server-Sent Events clients.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Protocol

from scoreboard.core.config import settings
from scoreboard.core.errors import DependencyError

logger = logging.getLogger(__name__)

METRIC_RECORDED = "metric_recorded"
ACHIEVEMENT_GRANTED = "achievement_granted"
CONNECTED = "connected"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ActivityEvent:
    """Activity event sent to live-activity consumers."""

    type: str  # "metric_recorded" | "achievement_granted" | "connected"
    user_id: int | None = None
    display_name: str | None = None
    metric_type: str | None = None
    value: str | None = None  # decimal rendered as text, never float
    achievement_name: str | None = None
    leaderboard_id: int | None = None
    timestamp: str = field(default_factory=_utcnow_iso)

    def to_payload(self) -> dict:
        """Wire payload: camelCase keys, optional fields omitted when unset."""
        payload = {
            "type": self.type,
            "userId": self.user_id,
            "displayName": self.display_name,
            "metricType": self.metric_type,
            "value": self.value,
            "achievementName": self.achievement_name,
            "leaderboardId": self.leaderboard_id,
            "timestamp": self.timestamp,
        }
        return {key: value for key, value in payload.items() if value is not None}


def metric_recorded_event(
    user_id: int,
    display_name: str,
    metric_type: str,
    value: Decimal,
    leaderboard_id: int | None = None,
) -> ActivityEvent:
    return ActivityEvent(
        type=METRIC_RECORDED,
        user_id=user_id,
        display_name=display_name,
        metric_type=metric_type,
        value=str(value),
        leaderboard_id=leaderboard_id,
    )


def achievement_granted_event(user_id: int, display_name: str, achievement_name: str) -> ActivityEvent:
    return ActivityEvent(
        type=ACHIEVEMENT_GRANTED,
        user_id=user_id,
        display_name=display_name,
        achievement_name=achievement_name,
    )


class EventSink(Protocol):
    """Outbound notification interface consumed by the scoring core."""

    async def publish(self, event: ActivityEvent) -> None:
        ...


class EventRelay:
    """Manages SSE subscribers and broadcasts activity events to them."""

    def __init__(self, queue_size: int | None = None):
        self._clients: list[asyncio.Queue] = []
        self._queue_size = queue_size or settings.event_queue_size
        self._closed = False
        self.dropped_events = 0

    async def subscribe(self) -> AsyncGenerator[str, None]:
        """
        Subscribe to activity events.

        Returns an async generator of SSE-formatted data strings.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._clients.append(queue)

        try:
            # Send initial connection event
            yield self._format_sse(ActivityEvent(type=CONNECTED))

            while True:
                event = await queue.get()
                if event is None:
                    # Relay closed
                    break
                yield self._format_sse(event)
        finally:
            self._clients.remove(queue)

    async def publish(self, event: ActivityEvent) -> None:
        """
        Send event to all connected clients.

        Raises:
            DependencyError: the relay has been closed
        """
        if self._closed:
            raise DependencyError("Event relay is closed", event_type=event.type)

        for queue in self._clients:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Slow consumer - drop its copy rather than block the writer
                self.dropped_events += 1
                logger.warning("Dropping %s event for a slow subscriber", event.type)

    def close(self) -> None:
        """Stop accepting events and release every subscriber."""
        self._closed = True
        for queue in self._clients:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                queue.get_nowait()
                queue.put_nowait(None)

    def _format_sse(self, event: ActivityEvent) -> str:
        """Format event as SSE data string."""
        data = json.dumps(event.to_payload())
        return f"event: {event.type}\ndata: {data}\n\n"

    @property
    def client_count(self) -> int:
        """Number of currently connected clients."""
        return len(self._clients)

    @property
    def is_closed(self) -> bool:
        return self._closed


async def notify(sink: EventSink | None, event: ActivityEvent) -> bool:
    """Best-effort delivery. Never raises; returns whether the sink accepted the event."""
    if sink is None:
        return False
    try:
        await sink.publish(event)
    except DependencyError as e:
        logger.warning("Notification relay unavailable, %s event dropped: %s", event.type, e)
        return False
    except Exception:
        logger.exception("Notification sink failed, %s event dropped", event.type)
        return False
    return True


# Singleton instance
event_relay = EventRelay()
