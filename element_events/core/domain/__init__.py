"""
Domain models for elements, lifecycle notifications and element events.

This module contains pure data models without I/O or framework
dependencies.
"""

from .elements import (
    Element, ElementKind, LifecycleState, LifecycleEventType,
    ElementLifecycleEvent, can_transition,
)
from .events import (
    EventType, EventPriority, EventMetadata, ElementEvent,
    ElementEventResult, BatchElementEventResult, BatchFailure,
    LifecycleResult, EventHistoryEntry, Subscription, SubscriptionScope,
    Unsubscribe,
)

__all__ = [
    "Element",
    "ElementKind",
    "LifecycleState",
    "LifecycleEventType",
    "ElementLifecycleEvent",
    "can_transition",
    "EventType",
    "EventPriority",
    "EventMetadata",
    "ElementEvent",
    "ElementEventResult",
    "BatchElementEventResult",
    "BatchFailure",
    "LifecycleResult",
    "EventHistoryEntry",
    "Subscription",
    "SubscriptionScope",
    "Unsubscribe",
]
