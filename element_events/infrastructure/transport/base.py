"""
Base transport implementation.

BaseTransport implements the ITransport contract (connection state machine,
deadlines, handler registries, statistics and autonomous reconnection) on
top of a small set of hooks that concrete transports provide.
"""

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from loguru import logger

from ...core.domain.events import (
    BatchElementEventResult, BatchFailure, ElementEvent, ElementEventResult, Unsubscribe,
)
from ...core.errors import (
    DestroyedError, NotConnectedError, StateError, TransportTimeoutError, error_code_for,
)
from ...core.interfaces.transport import (
    BatchEventHandler, ConnectionState, ConnectionStateHandler, ErrorHandler,
    EventHandler, ITransport, TransportStats,
)
from ..config.models import TransportConfig

T = TypeVar("T")

LATENCY_SMOOTHING = 0.1


@dataclass
class TransportMetrics:
    """Mutable transport counters; exposed as TransportStats snapshots."""
    events_sent: int = 0
    events_received: int = 0
    batch_events_sent: int = 0
    batch_events_received: int = 0
    connection_errors: int = 0
    message_errors: int = 0
    average_latency: float = 0.0
    latency_samples: int = 0

    def record_latency(self, latency: float) -> None:
        """Fold a latency sample into the exponential moving average."""
        if self.latency_samples == 0:
            self.average_latency = latency
        else:
            self.average_latency = (LATENCY_SMOOTHING * latency
                                    + (1 - LATENCY_SMOOTHING) * self.average_latency)
        self.latency_samples += 1


class BaseTransport(ITransport, ABC):
    """
    Base transport implementation.

    Subclasses implement ``_perform_connect``, ``_perform_disconnect`` and
    ``_perform_send``, optionally ``_perform_send_batch``, and feed inbound
    traffic through ``_dispatch_inbound`` / ``_dispatch_inbound_batch``. A
    subclass that detects a dropped connection calls
    ``_handle_connection_fault``.
    """

    def __init__(self, config: Optional[TransportConfig] = None, name: Optional[str] = None):
        self._config = config or TransportConfig()
        self._name = name or self.__class__.__name__

        self._state = ConnectionState.DISCONNECTED
        self._destroyed = False
        self._metrics = TransportMetrics()
        self._connected_at: Optional[float] = None

        self._connect_task: Optional[asyncio.Future[None]] = None
        self._reconnect_task: Optional[asyncio.Future[None]] = None

        self._element_handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._global_handlers: List[EventHandler] = []
        self._batch_handlers: List[BatchEventHandler] = []
        self._state_handlers: List[ConnectionStateHandler] = []
        self._error_handlers: List[ErrorHandler] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> TransportConfig:
        return self._config

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    # Hooks

    @abstractmethod
    async def _perform_connect(self) -> None:
        """Establish the underlying connection."""
        pass

    @abstractmethod
    async def _perform_disconnect(self) -> None:
        """Tear down the underlying connection."""
        pass

    @abstractmethod
    async def _perform_send(self, event: ElementEvent) -> None:
        """Put one event on the wire."""
        pass

    async def _perform_send_batch(self, events: List[ElementEvent]) -> List[Optional[BaseException]]:
        """
        Put a batch on the wire.

        Returns:
            One entry per event: None when sent, the exception otherwise
        """
        outcomes: List[Optional[BaseException]] = []
        for event in events:
            try:
                await self._perform_send(event)
                outcomes.append(None)
            except Exception as e:
                outcomes.append(e)
        return outcomes

    # Connection

    async def connect(self) -> None:
        """
        Connect to the remote peer.

        Concurrent callers share the in-flight attempt. Connecting an already
        connected transport is a no-op.
        """
        self._ensure_alive()
        if self._state == ConnectionState.CONNECTED:
            return

        if self._reconnect_task is not None and not self._reconnect_task.done():
            await asyncio.shield(self._reconnect_task)
            if self._state != ConnectionState.CONNECTED:
                raise StateError(f"Transport {self._name} failed to reconnect")
            return

        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.ensure_future(self._run_connect())

        task = self._connect_task
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and self._connect_task is task:
                self._connect_task = None

    async def _run_connect(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Transport {self._name} connecting to {self._config.url}")
        try:
            await self._with_deadline(self._perform_connect(), "connect")
        except Exception as e:
            self._metrics.connection_errors += 1
            self._set_state(ConnectionState.ERROR, e)
            self._notify_error(e, {"operation": "connect", "url": self._config.url})
            logger.error(f"Transport {self._name} failed to connect: {e}")
            raise

        self._mark_connected()
        logger.info(f"Transport {self._name} connected")

    async def disconnect(self) -> None:
        """Disconnect. Idempotent; cancels a pending reconnect."""
        self._ensure_alive()
        await self._shutdown()

    async def _shutdown(self) -> None:
        await self._cancel(self._reconnect_task)
        self._reconnect_task = None
        await self._cancel(self._connect_task)
        self._connect_task = None

        if self._state == ConnectionState.DISCONNECTED:
            return

        try:
            await self._perform_disconnect()
        except Exception as e:
            logger.warning(f"Transport {self._name} disconnect error: {e}")
            self._notify_error(e, {"operation": "disconnect"})
        finally:
            self._connected_at = None
            self._set_state(ConnectionState.DISCONNECTED)
        logger.info(f"Transport {self._name} disconnected")

    def _mark_connected(self) -> None:
        self._connected_at = time.time()
        self._set_state(ConnectionState.CONNECTED)

    def _handle_connection_fault(self, error: BaseException) -> None:
        """
        React to a dropped connection.

        With auto_reconnect the transport moves to ``reconnecting`` and
        retries in the background, otherwise it moves to ``error``.
        """
        if self._destroyed or self._state != ConnectionState.CONNECTED:
            return

        self._metrics.connection_errors += 1
        self._connected_at = None
        logger.warning(f"Transport {self._name} lost connection: {error}")
        self._notify_error(error, {"operation": "connection"})

        if not self._config.auto_reconnect:
            self._set_state(ConnectionState.ERROR, error)
            return

        self._set_state(ConnectionState.RECONNECTING, error)
        self._reconnect_task = asyncio.ensure_future(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        attempts = self._config.retry_attempts
        last_error: Optional[BaseException] = None

        for attempt in range(attempts):
            delay = min(self._config.retry_delay * (attempt + 1), self._config.max_retry_delay)
            await asyncio.sleep(delay)
            try:
                await self._with_deadline(self._perform_connect(), "reconnect")
            except Exception as e:
                last_error = e
                self._metrics.connection_errors += 1
                logger.warning(
                    f"Transport {self._name} reconnect failed (attempt {attempt + 1}/{attempts}): {e}")
                continue

            self._mark_connected()
            logger.info(f"Transport {self._name} reconnected after {attempt + 1} attempt(s)")
            return

        self._set_state(ConnectionState.ERROR, last_error)
        if last_error is not None:
            self._notify_error(last_error, {"operation": "reconnect"})
        logger.error(f"Transport {self._name} gave up reconnecting after {attempts} attempt(s)")

    # Sending

    async def send_event(self, event: ElementEvent) -> ElementEventResult:
        self._ensure_alive()
        self._ensure_connected()

        start_time = time.time()
        try:
            await self._with_deadline(self._perform_send(event), "send")
        except Exception as e:
            self._metrics.message_errors += 1
            self._notify_error(e, {"operation": "send", "element_id": event.element_id})
            raise

        self._metrics.record_latency(time.time() - start_time)
        self._metrics.events_sent += 1
        return ElementEventResult.ok(event.element_id, event_id=event.event_id)

    async def send_batch_events(self, events: Sequence[ElementEvent]) -> BatchElementEventResult:
        self._ensure_alive()
        self._ensure_connected()

        batch = list(events)
        start_time = time.time()
        try:
            outcomes = await self._with_deadline(self._perform_send_batch(batch), "send batch")
        except Exception as e:
            self._metrics.message_errors += 1
            self._notify_error(e, {"operation": "send_batch", "size": len(batch)})
            raise

        elapsed = time.time() - start_time
        self._metrics.record_latency(elapsed)

        result = BatchElementEventResult(total_events=len(batch), processing_time=elapsed)
        for event, error in zip(batch, outcomes):
            if error is None:
                result.successful.append(event.element_id)
                continue
            self._metrics.message_errors += 1
            self._notify_error(error, {"operation": "send_batch", "element_id": event.element_id})
            result.failed.append(BatchFailure(
                element_id=event.element_id, error=str(error), code=error_code_for(error)))

        self._metrics.batch_events_sent += len(result.successful)
        return result

    # Subscriptions

    async def subscribe_to_element(self, element_id: str, handler: EventHandler) -> Unsubscribe:
        self._ensure_alive()
        self._ensure_connected()
        handlers = self._element_handlers[element_id]
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)
            if not handlers and self._element_handlers.get(element_id) is handlers:
                del self._element_handlers[element_id]

        return unsubscribe

    async def subscribe_to_all(self, handler: EventHandler) -> Unsubscribe:
        self._ensure_alive()
        self._ensure_connected()
        return self._add_handler(self._global_handlers, handler)

    async def subscribe_to_batch(self, handler: BatchEventHandler) -> Unsubscribe:
        self._ensure_alive()
        self._ensure_connected()
        return self._add_handler(self._batch_handlers, handler)

    def on_connection_state_change(self, handler: ConnectionStateHandler) -> Unsubscribe:
        self._ensure_alive()
        return self._add_handler(self._state_handlers, handler)

    def on_error(self, handler: ErrorHandler) -> Unsubscribe:
        self._ensure_alive()
        return self._add_handler(self._error_handlers, handler)

    def _add_handler(self, target: List[Any], handler: Any) -> Unsubscribe:
        target.append(handler)

        def unsubscribe() -> None:
            if handler in target:
                target.remove(handler)

        return unsubscribe

    # Inbound

    async def _dispatch_inbound(self, event: ElementEvent) -> None:
        """Fan an inbound event out to element and global handlers."""
        if self._destroyed:
            return
        self._metrics.events_received += 1
        handlers = list(self._element_handlers.get(event.element_id, [])) + list(self._global_handlers)
        for handler in handlers:
            await self._call_handler(handler, event)

    async def _dispatch_inbound_batch(self, events: Sequence[ElementEvent]) -> None:
        """Hand an inbound batch to batch handlers as one ordered group."""
        if self._destroyed:
            return
        self._metrics.batch_events_received += len(events)
        for handler in list(self._batch_handlers):
            await self._call_handler(handler, list(events))

    async def _call_handler(self, handler: Callable[[Any], Any], payload: Any) -> None:
        try:
            outcome = handler(payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Transport {self._name} handler error: {e}")

    # Stats and teardown

    def get_stats(self) -> TransportStats:
        self._ensure_alive()
        active = (sum(len(h) for h in self._element_handlers.values())
                  + len(self._global_handlers) + len(self._batch_handlers))
        uptime = 0.0
        if self._state == ConnectionState.CONNECTED and self._connected_at is not None:
            uptime = time.time() - self._connected_at
        return TransportStats(
            events_sent=self._metrics.events_sent,
            events_received=self._metrics.events_received,
            batch_events_sent=self._metrics.batch_events_sent,
            batch_events_received=self._metrics.batch_events_received,
            connection_errors=self._metrics.connection_errors,
            message_errors=self._metrics.message_errors,
            active_subscriptions=active,
            uptime=uptime,
            average_latency=self._metrics.average_latency,
        )

    async def destroy(self) -> None:
        """
        Permanently shut the transport down.

        Every later operation raises DestroyedError; a repeat destroy is a
        no-op.
        """
        if self._destroyed:
            return
        self._destroyed = True
        await self._shutdown()

        self._element_handlers.clear()
        self._global_handlers.clear()
        self._batch_handlers.clear()
        self._state_handlers.clear()
        self._error_handlers.clear()
        logger.debug(f"Transport {self._name} destroyed")

    # Helpers

    async def _with_deadline(self, operation: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self._config.timeout)
        except asyncio.TimeoutError:
            raise TransportTimeoutError(
                f"Transport {self._name} {what} timed out after {self._config.timeout}s") from None

    def _set_state(self, state: ConnectionState, error: Optional[BaseException] = None) -> None:
        old_state = self._state
        if old_state == state:
            return
        self._state = state
        logger.debug(f"Transport {self._name} state changed: {old_state.value} -> {state.value}")

        for handler in list(self._state_handlers):
            try:
                handler(state, error)
            except Exception as e:
                logger.error(f"Connection state handler error: {e}")

    def _notify_error(self, error: BaseException, context: Dict[str, Any]) -> None:
        for handler in list(self._error_handlers):
            try:
                handler(error, dict(context))
            except Exception as e:
                logger.error(f"Error handler failed: {e}")

    async def _cancel(self, task: Optional["asyncio.Future[Any]"]) -> None:
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    def _ensure_alive(self) -> None:
        if self._destroyed:
            raise DestroyedError(f"Transport {self._name} has been destroyed")

    def _ensure_connected(self) -> None:
        if self._state != ConnectionState.CONNECTED:
            raise NotConnectedError(
                f"Transport {self._name} is not connected (state: {self._state.value})")
