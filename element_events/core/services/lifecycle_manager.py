"""
Element lifecycle manager.

Tracks the lifecycle state of every element by id, enforces the allowed
transitions and emits one ElementLifecycleEvent per transition. Content
updates flow through the event manager as ``updatePayload`` events.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from loguru import logger

from ..domain.elements import (
    Element, ElementKind, ElementLifecycleEvent, LifecycleState,
    LIFECYCLE_EVENT_FOR_STATE, can_transition,
)
from ..domain.events import (
    ElementEvent, ElementEventResult, EventMetadata, EventType,
    LifecycleResult, Subscription, SubscriptionScope, Unsubscribe,
)
from ..errors import DestroyedError, DuplicateIdError, ErrorCode, error_code_for
from ..interfaces.content import IContentResolver
from ...infrastructure.config.models import LifecycleConfig
from .event_manager import EventManager

LifecycleCallback = Callable[[ElementLifecycleEvent], Any]
ElementUpdateCallback = Callable[[Element], Any]


class LifecycleManager:
    """
    Lifecycle state machine for elements.

    Operations on the same element id are serialized through a per-element
    lock; distinct ids proceed independently. Destroyed elements stay tracked
    until ``forget_element`` so their ids cannot be silently reused.
    """

    def __init__(self, event_manager: EventManager,
                 content_resolver: Optional[IContentResolver] = None,
                 config: Optional[LifecycleConfig] = None):
        self._event_manager = event_manager
        self._content_resolver = content_resolver
        self._config = config or LifecycleConfig()

        self._elements: Dict[str, Element] = {}
        self._states: Dict[str, LifecycleState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lifecycle_subscriptions: List[Subscription] = []
        self._update_subscriptions: Dict[str, List[Subscription]] = defaultdict(list)
        self._callback_tasks: Set[asyncio.Task[Any]] = set()
        self._destroyed = False

        event_manager.set_state_provider(self.get_element_state)

    @property
    def event_manager(self) -> EventManager:
        return self._event_manager

    async def create_element(self, element_id: str, kind: ElementKind,
                             content: Optional[Mapping[str, Any]] = None,
                             props: Optional[Mapping[str, Any]] = None,
                             metadata: Optional[Mapping[str, Any]] = None) -> Element:
        """
        Create and start tracking a new element in the ``created`` state.

        Raises:
            DuplicateIdError: If the id is already tracked
            DestroyedError: If the manager was destroyed
        """
        self._ensure_alive()
        if element_id in self._states:
            raise DuplicateIdError(f"Element {element_id} already exists",
                                   details={"state": self._states[element_id].value})

        element = Element(
            id=element_id,
            kind=kind,
            content=dict(content or {}),
            props=dict(props or {}),
            metadata=dict(metadata or {}),
        )
        self._elements[element_id] = element
        self._set_state(element_id, LifecycleState.CREATED)
        logger.debug(f"Created element {element_id} ({element.kind.value})")
        return element

    async def register_element(self, element: Element) -> LifecycleResult:
        """Make a created element visible to the event manager."""
        self._ensure_alive()
        if element.id not in self._states:
            return self._not_found(element.id)
        async with self._lock_for(element.id):
            tracked = self._elements.get(element.id)
            current = self._states.get(element.id)
            if tracked is None or current is None:
                return LifecycleResult.failure(
                    element.id, ErrorCode.NOT_FOUND, f"Element {element.id} not found")
            if tracked.kind != element.kind:
                return LifecycleResult.failure(
                    element.id, ErrorCode.INTEGRITY_ERROR,
                    f"Element {element.id} is tracked as {tracked.kind.value}, got {element.kind.value}",
                    state=current)
            if not can_transition(current, LifecycleState.REGISTERED):
                return self._illegal(element.id, current, LifecycleState.REGISTERED)

            self._elements[element.id] = element
            self._event_manager.register_element(element)
            return self._transition(element.id, LifecycleState.REGISTERED)

    async def activate_element(self, element_id: str) -> LifecycleResult:
        """Make an element eligible for event dispatch."""
        self._ensure_alive()
        if element_id not in self._states:
            return self._not_found(element_id)
        async with self._lock_for(element_id):
            current = self._states.get(element_id)
            if current is None:
                return self._not_found(element_id)
            if current == LifecycleState.ACTIVE:
                return LifecycleResult(success=True, element_id=element_id,
                                       state=current, previous_state=current)
            if not can_transition(current, LifecycleState.ACTIVE):
                return self._illegal(element_id, current, LifecycleState.ACTIVE)
            return self._transition(element_id, LifecycleState.ACTIVE)

    async def suspend_element(self, element_id: str) -> LifecycleResult:
        self._ensure_alive()
        if element_id not in self._states:
            return self._not_found(element_id)
        async with self._lock_for(element_id):
            current = self._states.get(element_id)
            if current is None:
                return self._not_found(element_id)
            if not can_transition(current, LifecycleState.SUSPENDED):
                return self._illegal(element_id, current, LifecycleState.SUSPENDED)
            return self._transition(element_id, LifecycleState.SUSPENDED)

    async def update_element_content(self, element_id: str, partial_content: Mapping[str, Any],
                                     metadata: Optional[Mapping[str, Any]] = None) -> ElementEventResult:
        """
        Update element content through the event pipeline.

        Only active elements accept updates. The element moves through
        ``updating`` while the content resolver normalizes the new content
        and the resulting ``updatePayload`` event is handed to the event
        manager; it then returns to ``active``, or lands in ``error`` if
        either step fails.

        Args:
            element_id: Target element
            partial_content: Content fields to merge
            metadata: Extra metadata attached to the event and transitions

        Returns:
            Result of the update; ``code`` is set on failure
        """
        self._ensure_alive()
        if element_id not in self._states:
            return ElementEventResult.failure(
                element_id, ErrorCode.NOT_FOUND, f"Element {element_id} not found")
        async with self._lock_for(element_id):
            current = self._states.get(element_id)
            if current is None:
                return ElementEventResult.failure(
                    element_id, ErrorCode.NOT_FOUND, f"Element {element_id} not found")
            if current != LifecycleState.ACTIVE:
                return ElementEventResult.failure(
                    element_id, ErrorCode.STATE_ERROR,
                    f"Cannot update element {element_id} in state {current.value}")

            element = self._elements[element_id]
            extra = dict(metadata or {})
            self._transition(element_id, LifecycleState.UPDATING, extra)

            try:
                content = await self._resolve_content(partial_content)
            except Exception as e:
                logger.warning(f"Content resolution failed for {element_id}: {e}")
                self._transition(element_id, LifecycleState.ERROR, {"error": str(e)})
                return ElementEventResult.failure(element_id, error_code_for(e), str(e))

            self._ensure_alive()
            event = ElementEvent(
                element_id=element_id,
                element_type=element.kind,
                event_type=EventType.UPDATE_PAYLOAD,
                data={"payload": content},
                metadata=EventMetadata(source=self._config.update_source, extra=extra),
            )
            sent = await self._event_manager.send_event(event, accept_updating=True)
            if not sent.success:
                logger.warning(f"Update event for {element_id} was rejected: {sent.error}")
                self._transition(element_id, LifecycleState.ERROR, {"error": sent.error})
                return sent

            element.merge_content(content)
            self._transition(element_id, LifecycleState.ACTIVE, extra)
            self._notify_update(element)
            return ElementEventResult(
                success=True,
                element_id=element_id,
                updated_at=element.metadata.get("updated_at"),
                data={"event_id": event.event_id, "content": dict(element.content)},
            )

    async def update_element_properties(self, element_id: str, props: Mapping[str, Any],
                                        metadata: Optional[Mapping[str, Any]] = None) -> ElementEventResult:
        """Send an ``updateProps`` event; no lifecycle transition."""
        self._ensure_alive()
        if element_id not in self._elements:
            return ElementEventResult.failure(
                element_id, ErrorCode.NOT_FOUND, f"Element {element_id} not found")
        async with self._lock_for(element_id):
            element = self._elements.get(element_id)
            if element is None:
                return ElementEventResult.failure(
                    element_id, ErrorCode.NOT_FOUND, f"Element {element_id} not found")

            event = ElementEvent(
                element_id=element_id,
                element_type=element.kind,
                event_type=EventType.UPDATE_PROPS,
                data={"props": dict(props)},
                metadata=EventMetadata(source=self._config.update_source, extra=dict(metadata or {})),
            )
            return await self._event_manager.send_event(event)

    async def destroy_element(self, element_id: str) -> LifecycleResult:
        """
        Destroy an element. Idempotent.

        The element is unregistered from the event manager and its pending
        events are dropped.
        """
        self._ensure_alive()
        if element_id not in self._states:
            return self._not_found(element_id)
        async with self._lock_for(element_id):
            current = self._states.get(element_id)
            if current is None:
                return self._not_found(element_id)
            if current == LifecycleState.DESTROYED:
                return LifecycleResult(success=True, element_id=element_id,
                                       state=current, previous_state=current)

            self._event_manager.unregister_element(element_id)
            self._update_subscriptions.pop(element_id, None)
            return self._transition(element_id, LifecycleState.DESTROYED)

    async def forget_element(self, element_id: str) -> LifecycleResult:
        """Stop tracking a destroyed element so its id can be reused."""
        self._ensure_alive()
        if element_id not in self._states:
            return self._not_found(element_id)
        async with self._lock_for(element_id):
            current = self._states.get(element_id)
            if current is None:
                return self._not_found(element_id)
            if current != LifecycleState.DESTROYED:
                return LifecycleResult.failure(
                    element_id, ErrorCode.STATE_ERROR,
                    f"Element {element_id} must be destroyed before it is forgotten", state=current)

            del self._states[element_id]
            del self._elements[element_id]
        self._locks.pop(element_id, None)
        return LifecycleResult(success=True, element_id=element_id, previous_state=current)

    def get_element(self, element_id: str) -> Optional[Element]:
        return self._elements.get(element_id)

    def get_element_state(self, element_id: str) -> Optional[LifecycleState]:
        return self._states.get(element_id)

    def get_elements_by_state(self, state: LifecycleState) -> List[str]:
        return [element_id for element_id, s in self._states.items() if s == state]

    def get_lifecycle_stats(self) -> Dict[str, int]:
        """Number of tracked elements per lifecycle state."""
        stats = {state.value: 0 for state in LifecycleState}
        for state in self._states.values():
            stats[state.value] += 1
        return stats

    def subscribe_to_lifecycle(self, callback: LifecycleCallback) -> Unsubscribe:
        self._ensure_alive()
        subscription = Subscription(SubscriptionScope.GLOBAL, callback)
        self._lifecycle_subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._lifecycle_subscriptions:
                self._lifecycle_subscriptions.remove(subscription)

        return unsubscribe

    def subscribe_to_element_updates(self, element_id: str,
                                     callback: ElementUpdateCallback) -> Unsubscribe:
        """Receive the element after each committed content update."""
        self._ensure_alive()
        subscription = Subscription(SubscriptionScope.ELEMENT, callback, element_id=element_id)
        self._update_subscriptions[element_id].append(subscription)

        def unsubscribe() -> None:
            subs = self._update_subscriptions.get(element_id)
            if subs and subscription in subs:
                subs.remove(subscription)

        return unsubscribe

    def destroy(self) -> None:
        """Tear the manager down. Later calls raise DestroyedError."""
        if self._destroyed:
            return
        self._destroyed = True
        for task in list(self._callback_tasks):
            task.cancel()
        self._callback_tasks.clear()
        self._lifecycle_subscriptions.clear()
        self._update_subscriptions.clear()
        self._elements.clear()
        self._states.clear()
        self._locks.clear()
        self._event_manager.set_state_provider(None)
        logger.debug("Lifecycle manager destroyed")

    # Internals

    async def _resolve_content(self, partial_content: Mapping[str, Any]) -> Dict[str, Any]:
        if self._content_resolver is None:
            return dict(partial_content)
        resolved = await self._content_resolver.resolve_payload(
            dict(partial_content), dict(self._config.capabilities))
        return dict(resolved)

    def _transition(self, element_id: str, target: LifecycleState,
                    metadata: Optional[Dict[str, Any]] = None) -> LifecycleResult:
        previous = self._set_state(element_id, target, metadata)
        return LifecycleResult(success=True, element_id=element_id,
                               state=target, previous_state=previous)

    def _set_state(self, element_id: str, target: LifecycleState,
                   metadata: Optional[Dict[str, Any]] = None) -> Optional[LifecycleState]:
        previous = self._states.get(element_id)
        self._states[element_id] = target
        event = ElementLifecycleEvent(
            element_id=element_id,
            event_type=LIFECYCLE_EVENT_FOR_STATE[target],
            new_state=target,
            previous_state=previous,
            metadata=dict(metadata or {}),
        )
        logger.debug(
            f"Element {element_id}: {previous.value if previous else None} -> {target.value}")
        self._emit(event)
        return previous

    def _emit(self, event: ElementLifecycleEvent) -> None:
        for subscription in list(self._lifecycle_subscriptions):
            self._call(subscription, event)

    def _notify_update(self, element: Element) -> None:
        for subscription in list(self._update_subscriptions.get(element.id, [])):
            self._call(subscription, element)

    def _call(self, subscription: Subscription, payload: Any) -> None:
        try:
            outcome = subscription.callback(payload)
        except Exception as e:
            subscription.error_count += 1
            logger.error(f"Error in lifecycle subscriber: {e}")
            return

        subscription.call_count += 1
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._callback_tasks.add(task)
            task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: "asyncio.Task[Any]") -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in async lifecycle subscriber: {error}")

    def _lock_for(self, element_id: str) -> asyncio.Lock:
        # Only called for tracked ids; forget_element drops the lock.
        lock = self._locks.get(element_id)
        if lock is None:
            lock = self._locks[element_id] = asyncio.Lock()
        return lock

    def _not_found(self, element_id: str) -> LifecycleResult:
        return LifecycleResult.failure(element_id, ErrorCode.NOT_FOUND, f"Element {element_id} not found")

    def _illegal(self, element_id: str, current: LifecycleState,
                 target: LifecycleState) -> LifecycleResult:
        return LifecycleResult.failure(
            element_id, ErrorCode.STATE_ERROR,
            f"Cannot move element {element_id} from {current.value} to {target.value}",
            state=current)

    def _ensure_alive(self) -> None:
        if self._destroyed:
            raise DestroyedError("LifecycleManager has been destroyed")
