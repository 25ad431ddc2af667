"""
Event manager for element mutation events.

This module owns the registry of live elements, the priority event queue and
the cooperative dispatch loop that drains it into element-scoped, global and
batch subscribers.
"""

import asyncio
import inspect
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import (
    Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Set, Tuple, Union,
)

from loguru import logger

from ..domain.elements import Element, LifecycleState
from ..domain.events import (
    BatchElementEventResult, BatchFailure, ElementEvent, ElementEventResult,
    EventHistoryEntry, EventPriority, EventType, Subscription, SubscriptionScope,
    Unsubscribe,
)
from ..errors import DestroyedError, ElementEventsError, ErrorCode, error_code_for
from ..interfaces.lifecycle import IComponent
from ...infrastructure.config.models import EventManagerConfig
from .event_queue import DeliveryCallback, EventQueue, QueuedEvent

StateProvider = Callable[[str], Optional[LifecycleState]]
EventCallback = Callable[[ElementEvent], Any]
BatchEventCallback = Callable[[List[ElementEvent]], Any]


@dataclass
class EventValidation:
    """Outcome of the injected validate_event hook."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)


ValidateEventHook = Callable[
    [ElementEvent],
    Union[bool, EventValidation, Awaitable[Union[bool, EventValidation]]],
]


class EventManager(IComponent):
    """
    Central manager for element events.

    ``send_event`` reports acceptance into the queue, not delivery. Delivery is
    observable through the history, subscribers and the optional
    ``on_delivered`` callback.
    """

    def __init__(self, config: Optional[EventManagerConfig] = None,
                 validate_event: Optional[ValidateEventHook] = None):
        self._config = config or EventManagerConfig()
        self._queue = EventQueue(self._config.queue)
        self._validate_event = validate_event
        self._state_provider: Optional[StateProvider] = None

        self._elements: Dict[str, Element] = {}
        self._history: Deque[EventHistoryEntry] = deque(maxlen=self._config.max_history_size)
        self._element_subscriptions: Dict[str, List[Subscription]] = defaultdict(list)
        self._global_subscriptions: List[Subscription] = []
        self._batch_subscriptions: List[Subscription] = []

        self._flush_lock = asyncio.Lock()
        self._wakeup: Optional[asyncio.Event] = None
        self._dispatch_task: Optional[asyncio.Task[None]] = None
        self._flushing_task: Optional[asyncio.Task[Any]] = None
        self._callback_tasks: Set["asyncio.Future[Any]"] = set()
        self._running = False
        self._destroyed = False

        self._metrics: Dict[str, int] = {
            'events_accepted': 0,
            'events_rejected': 0,
            'events_deduplicated': 0,
            'events_dispatched': 0,
            'events_failed': 0,
            'callback_errors': 0,
            'ticks': 0,
        }

        if self._config.enable_persistence:
            logger.info("Event persistence requested; no persistence backend is attached")

    @property
    def name(self) -> str:
        return "EventManager"

    @property
    def config(self) -> EventManagerConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the dispatch loop."""
        self._ensure_alive()
        if self._running:
            return

        self._running = True
        self._wakeup = asyncio.Event()
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(self._wakeup))
        logger.info(
            f"Event manager started (flush interval {self._config.queue.flush_interval}s, "
            f"max queue {self._config.queue.max_queue_size})")

    async def stop(self) -> None:
        """Stop the dispatch loop after delivering what is already queued."""
        if not self._running:
            return

        logger.info("Stopping event manager...")
        self._running = False
        if self._wakeup is not None:
            self._wakeup.set()

        if self._dispatch_task is not None:
            # The loop exits on its own after any pass in progress completes.
            await asyncio.gather(self._dispatch_task, return_exceptions=True)
            self._dispatch_task = None

        if not self._destroyed:
            await self.flush()
        logger.info("Event manager stopped")

    async def check_health(self) -> Dict[str, Any]:
        return {
            'healthy': not self._destroyed,
            'status': 'destroyed' if self._destroyed else ('running' if self._running else 'stopped'),
            'details': {
                'registered_elements': len(self._elements),
                'queued_events': self._queue.total_size(),
                'history_size': len(self._history),
                **self._metrics,
            },
        }

    def get_metrics(self) -> Dict[str, int]:
        return dict(self._metrics)

    def set_state_provider(self, provider: Optional[StateProvider]) -> None:
        """
        Attach the lifecycle state lookup used to gate events.

        Without a provider every registered element is treated as active.
        """
        self._state_provider = provider

    # Registry

    def register_element(self, element: Element) -> None:
        self._ensure_alive()
        self._elements[element.id] = element
        logger.debug(f"Registered element {element.id} ({element.kind.value})")

    def unregister_element(self, element_id: str) -> bool:
        """
        Remove an element, its subscribers and its pending events.

        Returns:
            True if the element was registered
        """
        self._ensure_alive()
        element = self._elements.pop(element_id, None)
        if element is None:
            return False

        self._element_subscriptions.pop(element_id, None)
        dropped = self._queue.remove_element(element_id)
        if dropped:
            logger.debug(f"Dropped {len(dropped)} pending event(s) for unregistered element {element_id}")
            result = ElementEventResult.failure(
                element_id, ErrorCode.NOT_FOUND, f"Element {element_id} was unregistered")
            for entry in dropped:
                entry.result = result
                for callback in entry.callbacks:
                    self._schedule_callback(callback, result)

        logger.debug(f"Unregistered element {element_id}")
        return True

    def get_element(self, element_id: str) -> Optional[Element]:
        return self._elements.get(element_id)

    def get_registered_elements(self) -> List[Element]:
        return list(self._elements.values())

    # Sending

    async def send_event(self, event: ElementEvent,
                         on_delivered: Optional[DeliveryCallback] = None, *,
                         accept_updating: bool = False) -> ElementEventResult:
        """
        Validate and enqueue an event.

        Args:
            event: Event to send
            on_delivered: Called with the dispatch result once delivered
            accept_updating: Also accept elements that are mid-update; used by
                the lifecycle manager for the event an update emits

        Returns:
            Acceptance result; ``code`` is set when rejected

        An accepted IMMEDIATE event preempts the flush interval: everything
        queued is dispatched before this call returns.
        """
        result, _ = await self._submit(event, on_delivered, accept_updating=accept_updating)
        return result

    async def deliver_remote_event(self, event: ElementEvent,
                                   on_delivered: Optional[DeliveryCallback] = None) -> ElementEventResult:
        """
        Inject an event received from a remote peer.

        Same gates as send_event, plus the event kind must match the
        registered element. An IMMEDIATE event wakes the dispatch loop
        instead of flushing inline; the caller may be inside a peer's
        dispatch pass.
        """
        result, _ = await self._submit(event, on_delivered, check_kind=True, flush_inline=False)
        return result

    async def send_batch_events(self, events: List[ElementEvent]) -> BatchElementEventResult:
        """
        Send events independently; a failure never blocks the others.

        Accepted events are reported as ``successful`` when already delivered
        (an IMMEDIATE event flushes inline) and as ``queued`` otherwise.
        """
        self._ensure_alive()
        start_time = time.time()
        outcomes: List[Tuple[ElementEvent, ElementEventResult, Optional[QueuedEvent]]] = []

        for event in events:
            try:
                result, entry = await self._submit(event, None)
            except Exception as e:
                element_id = getattr(event, "element_id", "") or ""
                logger.warning(f"Batch event for {element_id!r} failed: {e}")
                result, entry = ElementEventResult.failure(element_id, error_code_for(e), str(e)), None
            outcomes.append((event, result, entry))

        batch = BatchElementEventResult(total_events=len(events))
        for event, result, entry in outcomes:
            if not result.success or entry is None:
                batch.failed.append(BatchFailure(
                    element_id=result.element_id,
                    error=result.error or "Unknown error",
                    code=result.code or ErrorCode.UNKNOWN_ERROR,
                ))
            elif entry.delivered:
                batch.successful.append(result.element_id)
            else:
                batch.queued.append(result.element_id)

        batch.processing_time = time.time() - start_time
        return batch

    async def _submit(self, event: ElementEvent, on_delivered: Optional[DeliveryCallback],
                      accept_updating: bool = False,
                      check_kind: bool = False,
                      flush_inline: bool = True) -> Tuple[ElementEventResult, Optional[QueuedEvent]]:
        self._ensure_alive()

        rejection = self._check_target(event, accept_updating, check_kind)
        if rejection is None and not self._queue.accepts_priority(event.priority):
            rejection = ElementEventResult.failure(
                event.element_id, ErrorCode.VALIDATION_ERROR,
                f"Unknown priority level: {event.priority.wire_name}")

        if rejection is None and self._validate_event is not None:
            rejection = await self._run_validation(self._validate_event, event)
            if rejection is None:
                # The element may have changed state while the hook ran.
                rejection = self._check_target(event, accept_updating, check_kind)

        if rejection is not None:
            self._metrics['events_rejected'] += 1
            return rejection, None

        try:
            outcome = self._queue.enqueue(event, on_delivered)
        except ElementEventsError as e:
            self._metrics['events_rejected'] += 1
            logger.warning(f"Rejected event for {event.element_id}: {e.message}")
            return ElementEventResult.failure(event.element_id, e.code, e.message), None

        self._metrics['events_accepted'] += 1
        if outcome.deduplicated:
            self._metrics['events_deduplicated'] += 1

        if event.priority == EventPriority.IMMEDIATE:
            if flush_inline:
                await self._flush_immediate()
            elif self._wakeup is not None:
                self._wakeup.set()

        return ElementEventResult.ok(
            event.element_id,
            event_id=outcome.entry.event.event_id,
            deduplicated=outcome.deduplicated,
        ), outcome.entry

    def _check_target(self, event: ElementEvent, accept_updating: bool,
                      check_kind: bool) -> Optional[ElementEventResult]:
        element = self._elements.get(event.element_id)
        if element is None:
            return ElementEventResult.failure(
                event.element_id, ErrorCode.NOT_FOUND, f"Element {event.element_id} not found")

        state = self._state_provider(event.element_id) if self._state_provider else LifecycleState.ACTIVE
        allowed = {LifecycleState.ACTIVE}
        if accept_updating:
            allowed.add(LifecycleState.UPDATING)
        if state not in allowed:
            state_name = state.value if state else None
            return ElementEventResult.failure(
                event.element_id, ErrorCode.STATE_ERROR,
                f"Element {event.element_id} is not active (state: {state_name})")

        if check_kind and element.kind != event.element_type:
            return ElementEventResult.failure(
                event.element_id, ErrorCode.INTEGRITY_ERROR,
                f"Event kind {event.element_type.value} does not match element kind {element.kind.value}")

        return None

    async def _run_validation(self, hook: ValidateEventHook,
                              event: ElementEvent) -> Optional[ElementEventResult]:
        try:
            outcome = hook(event)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as e:
            logger.warning(f"validate_event hook raised for {event.element_id}: {e}")
            return ElementEventResult.failure(event.element_id, ErrorCode.VALIDATION_ERROR, str(e))

        if isinstance(outcome, EventValidation):
            if outcome.is_valid:
                return None
            errors = outcome.errors or ["Event validation failed"]
            result = ElementEventResult.failure(event.element_id, ErrorCode.VALIDATION_ERROR, errors[0])
            result.errors = list(errors)
            return result

        if outcome:
            return None
        return ElementEventResult.failure(
            event.element_id, ErrorCode.VALIDATION_ERROR, "Event validation failed")

    # Dispatch

    async def flush(self) -> BatchElementEventResult:
        """
        Run one dispatch pass over everything queued.

        Events are delivered strictly by priority and FIFO within a tier.
        Subscriber lists are snapshotted at the start of the pass.
        """
        async with self._flush_lock:
            self._flushing_task = asyncio.current_task()
            try:
                return await self._dispatch_pass()
            finally:
                self._flushing_task = None

    async def _flush_immediate(self) -> None:
        if self._flushing_task is not None and self._flushing_task is asyncio.current_task():
            # Sent from a subscriber during a pass; the lock is not reentrant.
            if self._wakeup is not None:
                self._wakeup.set()
            return
        await self.flush()

    async def _dispatch_pass(self) -> BatchElementEventResult:
        entries = self._queue.drain()
        tick = BatchElementEventResult(total_events=len(entries))
        if not entries:
            return tick

        start_time = time.time()
        self._metrics['ticks'] += 1
        element_subs = {k: list(v) for k, v in self._element_subscriptions.items()}
        global_subs = list(self._global_subscriptions)
        batch_subs = list(self._batch_subscriptions)
        delivered: List[ElementEvent] = []

        for entry in entries:
            event = entry.event
            result = self._apply_event(event)
            entry.delivered = True
            entry.result = result
            self._history.append(EventHistoryEntry(event=event, result=result))

            if result.success:
                self._metrics['events_dispatched'] += 1
                tick.successful.append(event.element_id)
                delivered.append(event)
                for subscription in element_subs.get(event.element_id, []):
                    await self._invoke(subscription, event)
                for subscription in global_subs:
                    await self._invoke(subscription, event)
            else:
                self._metrics['events_failed'] += 1
                tick.failed.append(BatchFailure(
                    element_id=event.element_id,
                    error=result.error or "Unknown error",
                    code=result.code or ErrorCode.UNKNOWN_ERROR,
                ))

            for callback in entry.callbacks:
                await self._call_safely(callback, result, "delivery callback")

        if delivered:
            for subscription in batch_subs:
                await self._invoke(subscription, list(delivered))

        tick.processing_time = time.time() - start_time
        logger.trace(f"Dispatched {len(delivered)}/{len(entries)} event(s)")
        return tick

    def _apply_event(self, event: ElementEvent) -> ElementEventResult:
        element = self._elements.get(event.element_id)
        if element is None:
            return ElementEventResult.failure(
                event.element_id, ErrorCode.NOT_FOUND, f"Element {event.element_id} not found")

        data = event.data
        try:
            if event.event_type == EventType.UPDATE_PAYLOAD:
                payload = data.get("payload")
                if isinstance(payload, Mapping):
                    element.merge_content(payload)
            elif event.event_type == EventType.UPDATE_PROPS:
                props = data.get("props")
                if isinstance(props, Mapping):
                    element.merge_props(props)
            elif event.event_type == EventType.UPDATE_STYLE:
                style = data.get("style")
                if isinstance(style, Mapping):
                    element.merge_props({"style": {**element.props.get("style", {}), **style}})
            elif event.event_type == EventType.UPDATE_VARIANTS:
                variants = data.get("variants")
                if variants is not None:
                    element.merge_content({"variants": list(variants)})
            # refreshTransforms and validateContent are delivered without mutating the element
        except Exception as e:
            logger.error(f"Failed to apply {event.event_type.value} to {event.element_id}: {e}")
            return ElementEventResult.failure(event.element_id, error_code_for(e), str(e))

        return ElementEventResult.ok(event.element_id, event_id=event.event_id)

    async def _invoke(self, subscription: Subscription, payload: Any) -> None:
        ok = await self._call_safely(subscription.callback, payload,
                                     f"{subscription.scope.value} subscriber")
        if ok:
            subscription.call_count += 1
        else:
            subscription.error_count += 1

    async def _call_safely(self, callback: Callable[..., Any], payload: Any, what: str) -> bool:
        try:
            outcome = callback(payload)
            if inspect.isawaitable(outcome):
                await outcome
            return True
        except Exception as e:
            self._metrics['callback_errors'] += 1
            logger.error(f"Error in {what}: {e}")
            return False

    def _schedule_callback(self, callback: DeliveryCallback, result: ElementEventResult) -> None:
        try:
            outcome = callback(result)
        except Exception as e:
            self._metrics['callback_errors'] += 1
            logger.error(f"Error in delivery callback: {e}")
            return

        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._callback_tasks.add(task)
            task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: "asyncio.Future[Any]") -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._metrics['callback_errors'] += 1
            logger.error(f"Error in async delivery callback: {error}")

    async def _dispatch_loop(self, wakeup: asyncio.Event) -> None:
        interval = self._config.queue.flush_interval
        while self._running:
            try:
                await asyncio.wait_for(wakeup.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            wakeup.clear()

            if not self._running:
                break
            try:
                await self.flush()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Dispatch loop error: {e}")

    # Subscriptions

    def subscribe(self, element_id: str, callback: EventCallback) -> Unsubscribe:
        """Subscribe to delivered events of one element."""
        self._ensure_alive()
        subscription = Subscription(SubscriptionScope.ELEMENT, callback, element_id=element_id)
        self._element_subscriptions[element_id].append(subscription)

        def unsubscribe() -> None:
            subs = self._element_subscriptions.get(element_id)
            if subs and subscription in subs:
                subs.remove(subscription)
                if not subs:
                    self._element_subscriptions.pop(element_id, None)

        return unsubscribe

    def subscribe_to_all(self, callback: EventCallback) -> Unsubscribe:
        """Subscribe to every delivered event."""
        self._ensure_alive()
        return self._add_subscription(self._global_subscriptions,
                                      Subscription(SubscriptionScope.GLOBAL, callback))

    def subscribe_to_batch(self, callback: BatchEventCallback) -> Unsubscribe:
        """Subscribe to the ordered group of events delivered by each pass."""
        self._ensure_alive()
        return self._add_subscription(self._batch_subscriptions,
                                      Subscription(SubscriptionScope.BATCH, callback))

    def _add_subscription(self, target: List[Subscription], subscription: Subscription) -> Unsubscribe:
        target.append(subscription)

        def unsubscribe() -> None:
            if subscription in target:
                target.remove(subscription)

        return unsubscribe

    # Introspection

    def get_queue_stats(self) -> Dict[str, Any]:
        return {
            'total_queued': self._queue.total_size(),
            'queue_sizes': self._queue.sizes(),
        }

    def get_event_history(self, element_id: Optional[str] = None) -> List[EventHistoryEntry]:
        if element_id is not None:
            return [entry for entry in self._history if entry.element_id == element_id]
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def destroy(self) -> None:
        """Tear down the manager. Every later call raises DestroyedError."""
        if self._destroyed:
            return
        self._destroyed = True
        self._running = False
        if self._dispatch_task is not None and not self._dispatch_task.done():
            self._dispatch_task.cancel()
        self._dispatch_task = None
        for task in list(self._callback_tasks):
            task.cancel()
        self._callback_tasks.clear()
        self._queue.clear()
        self._elements.clear()
        self._element_subscriptions.clear()
        self._global_subscriptions.clear()
        self._batch_subscriptions.clear()
        self._history.clear()
        logger.debug("Event manager destroyed")

    def _ensure_alive(self) -> None:
        if self._destroyed:
            raise DestroyedError("EventManager has been destroyed")
