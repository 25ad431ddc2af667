"""
Element event domain models.

This module defines the mutation events sent to elements, their metadata,
the result values returned by the event and lifecycle managers, and the
subscription records used for fan-out.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, List, Optional

from ..errors import ErrorCode
from .elements import ElementKind, LifecycleState

REMOTE_SOURCE_PREFIX = "remote:"


class EventType(Enum):
    """Mutations and actions an event can request. Values are wire names."""
    UPDATE_PAYLOAD = "updatePayload"
    UPDATE_PROPS = "updateProps"
    UPDATE_VARIANTS = "updateVariants"
    UPDATE_STYLE = "updateStyle"
    REFRESH_TRANSFORMS = "refreshTransforms"
    VALIDATE_CONTENT = "validateContent"


class EventPriority(IntEnum):
    """Event priority levels; higher value is dispatched first."""
    LOW = 1
    NORMAL = 2
    HIGH = 3
    IMMEDIATE = 4

    @property
    def wire_name(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: Any) -> "EventPriority":
        """Accept an EventPriority, its wire name or its integer value."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown priority: {value}") from None
        return cls(value)


@dataclass(frozen=True)
class EventMetadata:
    """Tracking metadata attached to every event."""

    timestamp: float = field(default_factory=time.time)
    source: str = "api"
    priority: EventPriority = EventPriority.NORMAL
    correlation_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.priority, EventPriority):
            object.__setattr__(self, "priority", EventPriority.parse(self.priority))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "source": self.source,
            "priority": self.priority.wire_name,
            "correlation_id": self.correlation_id,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventMetadata":
        return cls(
            timestamp=data.get("timestamp", time.time()),
            source=data.get("source", "api"),
            priority=EventPriority.parse(data.get("priority", "normal")),
            correlation_id=data.get("correlation_id"),
            extra=dict(data.get("extra", {})),
        )


@dataclass(frozen=True)
class ElementEvent:
    """
    Immutable request for a single mutation or action on one element.

    Events are replaced, never mutated: deduplication and re-tagging build new
    instances with ``dataclasses.replace``.
    """

    element_id: str
    """Target element id."""

    element_type: ElementKind
    """Kind of the targeted element."""

    event_type: EventType
    """Requested mutation."""

    data: Dict[str, Any] = field(default_factory=dict)
    """Event payload, shape depends on ``event_type``."""

    metadata: EventMetadata = field(default_factory=EventMetadata)
    """Timestamp, source, priority and correlation id."""

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    """Unique event identifier."""

    persist_change: Optional[bool] = None
    trigger_transforms: Optional[bool] = None
    validate_first: Optional[bool] = None

    def __post_init__(self) -> None:
        if not self.element_id:
            raise ValueError("Event element_id cannot be empty")
        if isinstance(self.element_type, str):
            object.__setattr__(self, "element_type", ElementKind(self.element_type))
        if isinstance(self.event_type, str):
            object.__setattr__(self, "event_type", EventType(self.event_type))
        if not isinstance(self.event_type, EventType):
            raise ValueError("event_type must be an EventType value")

    @property
    def priority(self) -> EventPriority:
        return self.metadata.priority

    @property
    def is_remote(self) -> bool:
        """True for events received from a peer rather than raised locally."""
        return self.metadata.source.startswith(REMOTE_SOURCE_PREFIX)

    @property
    def dedup_key(self) -> str:
        # Local and inbound events never share a queue slot.
        origin = self.metadata.source if self.is_remote else "local"
        return f"{self.element_id}:{self.event_type.value}:{origin}"

    def with_source(self, source: str) -> "ElementEvent":
        """Return a copy of this event tagged with another source."""
        return replace(self, metadata=replace(self.metadata, source=source))

    def with_payload_of(self, newer: "ElementEvent") -> "ElementEvent":
        """
        Return a copy carrying ``newer``'s payload.

        Priority and identity stay with this event; data, timestamp and
        correlation id come from ``newer``.
        """
        metadata = replace(
            self.metadata,
            timestamp=newer.metadata.timestamp,
            correlation_id=newer.metadata.correlation_id or self.metadata.correlation_id,
        )
        return replace(self, data=dict(newer.data), metadata=metadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "element_id": self.element_id,
            "element_type": self.element_type.value,
            "event_type": self.event_type.value,
            "data": self.data,
            "metadata": self.metadata.to_dict(),
            "event_id": self.event_id,
            "persist_change": self.persist_change,
            "trigger_transforms": self.trigger_transforms,
            "validate_first": self.validate_first,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ElementEvent":
        return cls(
            element_id=data["element_id"],
            element_type=ElementKind(data["element_type"]),
            event_type=EventType(data["event_type"]),
            data=dict(data.get("data") or {}),
            metadata=EventMetadata.from_dict(data.get("metadata") or {}),
            event_id=data.get("event_id", str(uuid.uuid4())),
            persist_change=data.get("persist_change"),
            trigger_transforms=data.get("trigger_transforms"),
            validate_first=data.get("validate_first"),
        )


@dataclass
class ElementEventResult:
    """Outcome of sending or delivering one event."""

    success: bool
    element_id: str
    updated_at: Optional[float] = None
    errors: List[str] = field(default_factory=list)
    code: Optional[ErrorCode] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None

    @classmethod
    def ok(cls, element_id: str, **data: Any) -> "ElementEventResult":
        return cls(success=True, element_id=element_id, updated_at=time.time(), data=data)

    @classmethod
    def failure(cls, element_id: str, code: ErrorCode, message: str) -> "ElementEventResult":
        return cls(success=False, element_id=element_id, errors=[message], code=code)


@dataclass(frozen=True)
class BatchFailure:
    """One failed entry of a batch."""
    element_id: str
    error: str
    code: ErrorCode = ErrorCode.UNKNOWN_ERROR


@dataclass
class BatchElementEventResult:
    """
    Outcome of a batch send.

    ``successful``, ``failed`` and ``queued`` partition the input one to one.
    """

    successful: List[str] = field(default_factory=list)
    failed: List[BatchFailure] = field(default_factory=list)
    queued: List[str] = field(default_factory=list)
    total_events: int = 0
    processing_time: float = 0.0

    @property
    def accounted(self) -> int:
        return len(self.successful) + len(self.failed) + len(self.queued)


@dataclass
class LifecycleResult:
    """Outcome of a lifecycle transition request."""

    success: bool
    element_id: str
    state: Optional[LifecycleState] = None
    previous_state: Optional[LifecycleState] = None
    errors: List[str] = field(default_factory=list)
    code: Optional[ErrorCode] = None

    @property
    def error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None

    @classmethod
    def failure(cls, element_id: str, code: ErrorCode, message: str,
                state: Optional[LifecycleState] = None) -> "LifecycleResult":
        return cls(success=False, element_id=element_id, state=state,
                   previous_state=state, errors=[message], code=code)


@dataclass(frozen=True)
class EventHistoryEntry:
    """A delivered event together with its dispatch result."""
    event: ElementEvent
    result: ElementEventResult
    delivered_at: float = field(default_factory=time.time)

    @property
    def element_id(self) -> str:
        return self.event.element_id


class SubscriptionScope(Enum):
    """What a subscription listens to."""
    ELEMENT = "element"
    GLOBAL = "global"
    BATCH = "batch"


@dataclass
class Subscription:
    """A registered subscriber callback."""

    scope: SubscriptionScope
    callback: Callable[..., Any]
    element_id: Optional[str] = None
    subscription_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: float = field(default_factory=time.time)
    call_count: int = 0
    error_count: int = 0


Unsubscribe = Callable[[], None]
