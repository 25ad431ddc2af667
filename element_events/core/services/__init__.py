"""
Core services: the event queue, the event manager and the lifecycle manager.
"""

from .event_queue import EventQueue, QueuedEvent, EnqueueOutcome
from .event_manager import EventManager, EventValidation
from .lifecycle_manager import LifecycleManager

__all__ = [
    "EventQueue",
    "QueuedEvent",
    "EnqueueOutcome",
    "EventManager",
    "EventValidation",
    "LifecycleManager",
]
