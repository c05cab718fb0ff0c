"""Engine notification side-channel.

Listeners are plain callables registered per event. A failing listener is
logged and never affects playback.
"""

import asyncio
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

CHORD_CHANGED = "chord_changed"
NOTE_TRIGGERED = "note_triggered"
PLAY_STATE_CHANGED = "play_state_changed"

EVENT_TYPES = (CHORD_CHANGED, NOTE_TRIGGERED, PLAY_STATE_CHANGED)


class EngineEvents:
    """Listener registry for chord, note and play-state notifications."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[[Any], None]]] = {name: [] for name in EVENT_TYPES}

    def add_listener(self, event: str, listener: Callable[[Any], None]) -> None:
        """Register a listener.

        Args:
            event: One of chord_changed, note_triggered, play_state_changed
            listener: Called with the event payload

        Raises:
            ValueError: If event is unknown
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event} (must be one of {EVENT_TYPES})")
        self._listeners[event].append(listener)

    def remove_listener(self, event: str, listener: Callable[[Any], None]) -> None:
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def _emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(payload)
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}", exc_info=True)

    def chord_changed(self, name: str) -> None:
        self._emit(CHORD_CHANGED, name)

    def note_triggered(self, pitch_class: int) -> None:
        self._emit(NOTE_TRIGGERED, pitch_class)

    def play_state_changed(self, playing: bool) -> None:
        self._emit(PLAY_STATE_CHANGED, playing)


class EventBroadcaster:
    """Fans engine notifications out to WebSocket subscriber queues."""

    def __init__(self, events: EngineEvents, max_queue_size: int = 256):
        """Initialize broadcaster and register on every event type.

        Args:
            events: Engine event registry to listen on
            max_queue_size: Per-subscriber backlog before messages are dropped
        """
        self.events = events
        self.max_queue_size = max_queue_size
        self._subscribers: list[asyncio.Queue] = []
        self.dropped = 0

        self._handlers = {name: self._make_handler(name) for name in EVENT_TYPES}
        for name, handler in self._handlers.items():
            events.add_listener(name, handler)

    def _make_handler(self, event: str) -> Callable[[Any], None]:
        def handler(payload: Any) -> None:
            self.publish({"type": event, "value": payload})

        return handler

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        logger.info(f"Event subscriber connected (active: {len(self._subscribers)})")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)
            logger.info(f"Event subscriber disconnected (active: {len(self._subscribers)})")

    def publish(self, message: dict[str, Any]) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.warning(f"Subscriber backlog full, dropped {message['type']} event")

    def get_active_subscribers(self) -> int:
        return len(self._subscribers)

    def close(self) -> None:
        for name, handler in self._handlers.items():
            self.events.remove_listener(name, handler)
        self._subscribers.clear()
