"""
element-events: element lifecycle, event dispatch and transport toolkit.

Elements move through a lifecycle state machine; mutation events are queued
by priority, deduplicated and dispatched to subscribers; transports carry
events to and from remote peers.
"""

__version__ = "0.1.0"

from .core.errors import (
    ErrorCode, ElementEventsError, ValidationError, NotFoundError, StateError,
    QueueOverflowError, NotConnectedError, DestroyedError, TransportTimeoutError,
    IntegrityError, DuplicateIdError, UnknownError,
)
from .core.domain import (
    Element, ElementKind, LifecycleState, LifecycleEventType, ElementLifecycleEvent,
    EventType, EventPriority, EventMetadata, ElementEvent, ElementEventResult,
    BatchElementEventResult, BatchFailure, LifecycleResult, EventHistoryEntry,
)
from .core.interfaces import ConnectionState, ITransport, ITransportFactory, IContentResolver, TransportStats
from .core.services import EventManager, EventValidation, LifecycleManager
from .infrastructure.config import ApplicationConfig, ConfigLoader
from .infrastructure.transport import (
    BaseTransport, InMemoryTransport, MemoryHub, MemoryTransportFactory,
    TransportBridge, TransportRegistry, get_default_registry,
)
from .application import ElementEventSystem, create_event_system

__all__ = [
    "__version__",
    "ErrorCode",
    "ElementEventsError",
    "ValidationError",
    "NotFoundError",
    "StateError",
    "QueueOverflowError",
    "NotConnectedError",
    "DestroyedError",
    "TransportTimeoutError",
    "IntegrityError",
    "DuplicateIdError",
    "UnknownError",
    "Element",
    "ElementKind",
    "LifecycleState",
    "LifecycleEventType",
    "ElementLifecycleEvent",
    "EventType",
    "EventPriority",
    "EventMetadata",
    "ElementEvent",
    "ElementEventResult",
    "BatchElementEventResult",
    "BatchFailure",
    "LifecycleResult",
    "EventHistoryEntry",
    "ConnectionState",
    "ITransport",
    "ITransportFactory",
    "IContentResolver",
    "TransportStats",
    "EventManager",
    "EventValidation",
    "LifecycleManager",
    "ApplicationConfig",
    "ConfigLoader",
    "BaseTransport",
    "InMemoryTransport",
    "MemoryHub",
    "MemoryTransportFactory",
    "TransportBridge",
    "TransportRegistry",
    "get_default_registry",
    "ElementEventSystem",
    "create_event_system",
]
