"""
Element domain models and lifecycle definitions.

An Element is a content unit identified by a caller-assigned id. Its current
lifecycle state is not stored on the element; the lifecycle manager tracks it
by id.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional


class ElementKind(Enum):
    """Enumerated content types an element can carry."""
    MARKDOWN = "markdown"
    IMAGE = "image"
    MERMAID = "mermaid"
    VIDEO = "video"
    DOCUMENT = "document"


class LifecycleState(Enum):
    """Lifecycle states of an element."""
    CREATED = "created"
    REGISTERED = "registered"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    UPDATING = "updating"
    ERROR = "error"
    DESTROYED = "destroyed"


class LifecycleEventType(Enum):
    """Kinds of lifecycle notifications, one per transition target."""
    CREATED = "created"
    REGISTERED = "registered"
    ACTIVATED = "activated"
    SUSPENDED = "suspended"
    UPDATING = "updating"
    ERROR = "error"
    DESTROYED = "destroyed"


LIFECYCLE_EVENT_FOR_STATE: Dict[LifecycleState, LifecycleEventType] = {
    LifecycleState.CREATED: LifecycleEventType.CREATED,
    LifecycleState.REGISTERED: LifecycleEventType.REGISTERED,
    LifecycleState.ACTIVE: LifecycleEventType.ACTIVATED,
    LifecycleState.SUSPENDED: LifecycleEventType.SUSPENDED,
    LifecycleState.UPDATING: LifecycleEventType.UPDATING,
    LifecycleState.ERROR: LifecycleEventType.ERROR,
    LifecycleState.DESTROYED: LifecycleEventType.DESTROYED,
}

# Allowed source states for each target state.
ALLOWED_TRANSITIONS: Dict[LifecycleState, FrozenSet[LifecycleState]] = {
    LifecycleState.REGISTERED: frozenset({LifecycleState.CREATED}),
    LifecycleState.ACTIVE: frozenset({
        LifecycleState.REGISTERED,
        LifecycleState.SUSPENDED,
        LifecycleState.ERROR,
        LifecycleState.UPDATING,
    }),
    LifecycleState.SUSPENDED: frozenset({LifecycleState.ACTIVE}),
    LifecycleState.UPDATING: frozenset({LifecycleState.ACTIVE}),
    LifecycleState.ERROR: frozenset({LifecycleState.UPDATING}),
    LifecycleState.DESTROYED: frozenset({
        LifecycleState.CREATED,
        LifecycleState.REGISTERED,
        LifecycleState.ACTIVE,
        LifecycleState.SUSPENDED,
        LifecycleState.UPDATING,
        LifecycleState.ERROR,
    }),
}


def can_transition(current: LifecycleState, target: LifecycleState) -> bool:
    """Check whether ``current -> target`` is a defined transition."""
    return current in ALLOWED_TRANSITIONS.get(target, frozenset())


@dataclass
class Element:
    """
    A content unit tracked through the lifecycle state machine.

    ``content`` is an opaque payload mapping; the core only merges partial
    updates into it.
    """

    id: str
    kind: ElementKind
    content: Dict[str, Any] = field(default_factory=dict)
    props: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Element id cannot be empty")
        if isinstance(self.kind, str):
            self.kind = ElementKind(self.kind)
        if not isinstance(self.kind, ElementKind):
            raise ValueError("Element kind must be an ElementKind value")

        now = time.time()
        self.metadata.setdefault("created_at", now)
        self.metadata.setdefault("updated_at", now)

    def merge_content(self, partial: Mapping[str, Any]) -> None:
        """Merge a partial content mapping into the element content."""
        self.content = {**self.content, **partial}
        self.metadata["updated_at"] = time.time()

    def merge_props(self, props: Mapping[str, Any]) -> None:
        """Merge properties into the element."""
        self.props = {**self.props, **props}
        self.metadata["updated_at"] = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "content": dict(self.content),
            "props": dict(self.props),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class ElementLifecycleEvent:
    """Notification emitted for every lifecycle transition."""

    element_id: str
    event_type: LifecycleEventType
    new_state: LifecycleState
    previous_state: Optional[LifecycleState] = None
    timestamp: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "element_id": self.element_id,
            "event_type": self.event_type.value,
            "previous_state": self.previous_state.value if self.previous_state else None,
            "new_state": self.new_state.value,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }
