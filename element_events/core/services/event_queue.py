"""
Priority event queue with in-place deduplication.

Events are kept in one FIFO per priority tier. A drain returns every queued
entry, highest tier first and submission order within a tier.
"""

from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from loguru import logger

from ..domain.events import ElementEvent, ElementEventResult, EventPriority
from ..errors import QueueOverflowError, ValidationError
from ...infrastructure.config.models import EventQueueConfig

DeliveryCallback = Callable[[ElementEventResult], Any]


class QueuedEvent:
    """A queue slot. Deduplication swaps the event held by the slot."""

    __slots__ = ("event", "sequence", "callbacks", "merged_count", "delivered", "result")

    def __init__(self, event: ElementEvent, sequence: int) -> None:
        self.event = event
        self.sequence = sequence
        self.callbacks: List[DeliveryCallback] = []
        self.merged_count = 0
        self.delivered = False
        self.result: Optional[ElementEventResult] = None


class EnqueueOutcome:
    """What happened to an enqueued event."""

    __slots__ = ("entry", "deduplicated")

    def __init__(self, entry: QueuedEvent, deduplicated: bool) -> None:
        self.entry = entry
        self.deduplicated = deduplicated


class EventQueue:
    """
    Bounded, priority-tiered event queue.

    The bound is never enforced by evicting queued entries: an enqueue that
    would exceed ``max_queue_size`` raises QueueOverflowError instead.
    """

    def __init__(self, config: Optional[EventQueueConfig] = None) -> None:
        self._config = config or EventQueueConfig()
        self._levels = [EventPriority.parse(level) for level in self._config.priority_levels]
        self._tiers: Dict[EventPriority, Deque[QueuedEvent]] = {
            level: deque() for level in sorted(self._levels, reverse=True)
        }
        self._dedup: Dict[str, QueuedEvent] = {}
        self._sequence = 0

    @property
    def config(self) -> EventQueueConfig:
        return self._config

    def accepts_priority(self, priority: EventPriority) -> bool:
        return priority in self._tiers

    def enqueue(self, event: ElementEvent,
                on_delivered: Optional[DeliveryCallback] = None) -> EnqueueOutcome:
        """
        Queue an event.

        Raises:
            ValidationError: If the event priority is not a configured level
            QueueOverflowError: If the queue is full
        """
        tier = self._tiers.get(event.priority)
        if tier is None:
            raise ValidationError(f"Unknown priority level: {event.priority.wire_name}")

        if self._config.deduplicate_events:
            existing = self._dedup.get(event.dedup_key)
            if existing is not None and not existing.delivered:
                existing.event = existing.event.with_payload_of(event)
                existing.merged_count += 1
                if on_delivered is not None:
                    existing.callbacks.append(on_delivered)
                logger.trace(f"Deduplicated event {event.dedup_key} into slot {existing.sequence}")
                return EnqueueOutcome(existing, deduplicated=True)

        if self.total_size() >= self._config.max_queue_size:
            raise QueueOverflowError(
                f"Event queue is full ({self._config.max_queue_size} events)",
                details={"element_id": event.element_id},
            )

        self._sequence += 1
        entry = QueuedEvent(event, self._sequence)
        if on_delivered is not None:
            entry.callbacks.append(on_delivered)
        tier.append(entry)

        if self._config.deduplicate_events:
            self._dedup[event.dedup_key] = entry

        return EnqueueOutcome(entry, deduplicated=False)

    def drain(self) -> List[QueuedEvent]:
        """Remove and return every queued entry in dispatch order."""
        drained: List[QueuedEvent] = []
        for tier in self._tiers.values():
            drained.extend(tier)
            tier.clear()
        self._dedup.clear()
        return drained

    def remove_element(self, element_id: str) -> List[QueuedEvent]:
        """Drop all pending entries for one element and return them."""
        removed: List[QueuedEvent] = []
        for priority, tier in list(self._tiers.items()):
            kept: Deque[QueuedEvent] = deque()
            for entry in tier:
                if entry.event.element_id == element_id:
                    removed.append(entry)
                else:
                    kept.append(entry)
            self._tiers[priority] = kept
        for entry in removed:
            self._dedup.pop(entry.event.dedup_key, None)
        return removed

    def total_size(self) -> int:
        return sum(len(tier) for tier in self._tiers.values())

    def sizes(self) -> Dict[str, int]:
        """Queue size per configured priority level, lowest first."""
        return {
            level.wire_name: len(self._tiers[level])
            for level in sorted(self._tiers)
        }

    def clear(self) -> None:
        for tier in self._tiers.values():
            tier.clear()
        self._dedup.clear()


__all__ = ["EventQueue", "QueuedEvent", "EnqueueOutcome", "DeliveryCallback"]
