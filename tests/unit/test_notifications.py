"""Unit tests for engine notifications and the event broadcaster."""

import pytest

from engine.notifications import (
    CHORD_CHANGED,
    NOTE_TRIGGERED,
    PLAY_STATE_CHANGED,
    EngineEvents,
    EventBroadcaster,
)


def test_listeners_receive_payloads():
    """Test each notification reaches listeners of its event only."""
    events = EngineEvents()
    received = []
    events.add_listener(CHORD_CHANGED, lambda v: received.append(("chord", v)))
    events.add_listener(NOTE_TRIGGERED, lambda v: received.append(("note", v)))
    events.add_listener(PLAY_STATE_CHANGED, lambda v: received.append(("play", v)))

    events.chord_changed("C-E-G")
    events.note_triggered(7)
    events.play_state_changed(True)

    assert received == [("chord", "C-E-G"), ("note", 7), ("play", True)]


def test_failing_listener_is_isolated():
    """Test an exception in one listener does not stop the others."""
    events = EngineEvents()
    received = []

    def broken(value):
        raise RuntimeError("listener bug")

    events.add_listener(NOTE_TRIGGERED, broken)
    events.add_listener(NOTE_TRIGGERED, received.append)

    events.note_triggered(3)

    assert received == [3]


def test_unknown_event_rejected():
    """Test registering for an unknown event raises ValueError."""
    with pytest.raises(ValueError):
        EngineEvents().add_listener("tempo_changed", print)


def test_remove_listener():
    """Test removed listeners are no longer called."""
    events = EngineEvents()
    received = []
    events.add_listener(CHORD_CHANGED, received.append)
    events.remove_listener(CHORD_CHANGED, received.append)

    events.chord_changed("C-E-G")

    assert received == []
    assert events.listener_count(CHORD_CHANGED) == 0


@pytest.mark.asyncio
async def test_broadcaster_fans_out_to_subscribers():
    """Test every subscriber queue receives each event message."""
    events = EngineEvents()
    broadcaster = EventBroadcaster(events)
    first = broadcaster.subscribe()
    second = broadcaster.subscribe()

    events.chord_changed("D-F#-A")

    assert first.get_nowait() == {"type": "chord_changed", "value": "D-F#-A"}
    assert second.get_nowait() == {"type": "chord_changed", "value": "D-F#-A"}
    assert broadcaster.get_active_subscribers() == 2


@pytest.mark.asyncio
async def test_broadcaster_drops_when_backlog_full():
    """Test a slow subscriber loses messages instead of blocking the engine."""
    events = EngineEvents()
    broadcaster = EventBroadcaster(events, max_queue_size=2)
    queue = broadcaster.subscribe()

    for pitch_class in range(5):
        events.note_triggered(pitch_class)

    assert queue.qsize() == 2
    assert broadcaster.dropped == 3


@pytest.mark.asyncio
async def test_broadcaster_unsubscribe_and_close():
    """Test unsubscribed queues stop receiving and close detaches listeners."""
    events = EngineEvents()
    broadcaster = EventBroadcaster(events)
    queue = broadcaster.subscribe()
    broadcaster.unsubscribe(queue)

    events.play_state_changed(True)
    assert queue.empty()

    broadcaster.close()
    assert events.listener_count(PLAY_STATE_CHANGED) == 0
