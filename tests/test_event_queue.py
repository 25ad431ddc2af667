"""
Tests for the priority event queue.

This module tests tier ordering, in-place deduplication and the queue
bound.
"""

from typing import List

import pytest

from element_events.core.domain.elements import ElementKind
from element_events.core.domain.events import (
    ElementEvent, ElementEventResult, EventMetadata, EventPriority, EventType,
)
from element_events.core.errors import QueueOverflowError, ValidationError
from element_events.core.services.event_queue import EventQueue
from element_events.infrastructure.config.models import EventQueueConfig


def event(element_id: str, priority: EventPriority = EventPriority.NORMAL,
          event_type: EventType = EventType.UPDATE_PAYLOAD, **payload: object) -> ElementEvent:
    return ElementEvent(
        element_id=element_id,
        element_type=ElementKind.MARKDOWN,
        event_type=event_type,
        data={"payload": dict(payload)},
        metadata=EventMetadata(priority=priority),
    )


class TestEventQueueOrdering:
    """Test cases for dispatch order."""

    def test_priority_then_fifo(self) -> None:
        """Higher tiers drain first; submission order holds within a tier."""
        queue = EventQueue()
        queue.enqueue(event("a", EventPriority.LOW))
        queue.enqueue(event("b", EventPriority.IMMEDIATE))
        queue.enqueue(event("c", EventPriority.NORMAL))
        queue.enqueue(event("d", EventPriority.HIGH))
        queue.enqueue(event("e", EventPriority.NORMAL))

        order = [entry.event.element_id for entry in queue.drain()]

        assert order == ["b", "d", "c", "e", "a"]
        assert queue.total_size() == 0

    def test_sizes(self) -> None:
        queue = EventQueue()
        queue.enqueue(event("a", EventPriority.LOW))
        queue.enqueue(event("b", EventPriority.LOW, event_type=EventType.UPDATE_PROPS))
        queue.enqueue(event("c", EventPriority.HIGH))

        assert queue.sizes() == {"low": 2, "normal": 0, "high": 1, "immediate": 0}
        assert queue.total_size() == 3

    def test_unconfigured_priority(self) -> None:
        """Priorities outside the configured levels are rejected."""
        queue = EventQueue(EventQueueConfig(priority_levels=["normal", "high"]))

        assert not queue.accepts_priority(EventPriority.LOW)
        with pytest.raises(ValidationError):
            queue.enqueue(event("a", EventPriority.LOW))
        assert list(queue.sizes()) == ["normal", "high"]


class TestEventQueueDeduplication:
    """Test cases for in-place deduplication."""

    def test_newer_payload_wins(self) -> None:
        queue = EventQueue()
        first = queue.enqueue(event("a", v=1))
        second = queue.enqueue(event("a", v=2))

        assert first.deduplicated is False
        assert second.deduplicated is True
        assert second.entry is first.entry
        assert queue.total_size() == 1

        [entry] = queue.drain()
        assert entry.event.data == {"payload": {"v": 2}}
        assert entry.merged_count == 1

    def test_keeps_position_and_tier(self) -> None:
        """A duplicate keeps the first slot even at another priority."""
        queue = EventQueue()
        queue.enqueue(event("a", EventPriority.LOW, v=1))
        queue.enqueue(event("b", EventPriority.LOW))
        queue.enqueue(event("a", EventPriority.HIGH, v=2))

        entries = queue.drain()

        assert [e.event.element_id for e in entries] == ["a", "b"]
        assert entries[0].event.priority == EventPriority.LOW
        assert entries[0].event.data == {"payload": {"v": 2}}

    def test_different_event_types_not_merged(self) -> None:
        queue = EventQueue()
        queue.enqueue(event("a"))
        queue.enqueue(event("a", event_type=EventType.UPDATE_PROPS))
        assert queue.total_size() == 2

    def test_local_and_inbound_not_merged(self) -> None:
        """An inbound event and a local one for the same element keep their own slots."""
        queue = EventQueue()
        queue.enqueue(event("a", v="peer").with_source("remote:left"))
        outcome = queue.enqueue(event("a", v="mine"))

        assert outcome.deduplicated is False
        sources = [(e.event.metadata.source, e.event.data["payload"]["v"]) for e in queue.drain()]
        assert sources == [("remote:left", "peer"), ("api", "mine")]

    def test_callbacks_accumulate(self) -> None:
        queue = EventQueue()
        calls: List[ElementEventResult] = []
        queue.enqueue(event("a", v=1), calls.append)
        outcome = queue.enqueue(event("a", v=2), calls.append)

        assert len(outcome.entry.callbacks) == 2

    def test_disabled(self) -> None:
        queue = EventQueue(EventQueueConfig(deduplicate_events=False))
        queue.enqueue(event("a", v=1))
        queue.enqueue(event("a", v=2))

        payloads = [e.event.data["payload"]["v"] for e in queue.drain()]
        assert payloads == [1, 2]

    def test_no_merge_after_drain(self) -> None:
        queue = EventQueue()
        queue.enqueue(event("a", v=1))
        queue.drain()

        outcome = queue.enqueue(event("a", v=2))
        assert outcome.deduplicated is False


class TestEventQueueBound:
    """Test cases for the queue bound."""

    def test_overflow_rejects_new_events(self) -> None:
        queue = EventQueue(EventQueueConfig(max_queue_size=2))
        queue.enqueue(event("a"))
        queue.enqueue(event("b"))

        with pytest.raises(QueueOverflowError):
            queue.enqueue(event("c"))

        # Nothing already queued was dropped
        assert [e.event.element_id for e in queue.drain()] == ["a", "b"]

    def test_dedup_does_not_consume_capacity(self) -> None:
        queue = EventQueue(EventQueueConfig(max_queue_size=1))
        queue.enqueue(event("a", v=1))

        outcome = queue.enqueue(event("a", v=2))

        assert outcome.deduplicated is True
        assert queue.total_size() == 1


class TestEventQueueRemoval:
    def test_remove_element(self) -> None:
        queue = EventQueue()
        queue.enqueue(event("a", EventPriority.LOW))
        queue.enqueue(event("b", EventPriority.LOW))
        queue.enqueue(event("a", EventPriority.HIGH, event_type=EventType.UPDATE_PROPS))

        removed = queue.remove_element("a")

        assert len(removed) == 2
        assert [e.event.element_id for e in queue.drain()] == ["b"]

    def test_removed_entries_no_longer_merge(self) -> None:
        queue = EventQueue()
        queue.enqueue(event("a", v=1))
        queue.remove_element("a")

        outcome = queue.enqueue(event("a", v=2))
        assert outcome.deduplicated is False

    def test_clear(self) -> None:
        queue = EventQueue()
        queue.enqueue(event("a"))
        queue.clear()
        assert queue.total_size() == 0
