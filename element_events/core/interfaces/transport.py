"""
Transport interfaces for moving element events to and from remote peers.

A transport owns a connection state machine, outbound sends, inbound
subscriptions and statistics. Concrete wire protocols implement ITransport;
the in-memory reference implementation lives in
``element_events.infrastructure.transport``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from ..domain.events import BatchElementEventResult, ElementEvent, ElementEventResult, Unsubscribe


class ConnectionState(Enum):
    """Transport connection status."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


EventHandler = Callable[[ElementEvent], Union[None, Awaitable[None]]]
BatchEventHandler = Callable[[List[ElementEvent]], Union[None, Awaitable[None]]]
ConnectionStateHandler = Callable[[ConnectionState, Optional[BaseException]], None]
ErrorHandler = Callable[[BaseException, dict], None]


@dataclass(frozen=True)
class TransportStats:
    """Read-only snapshot of transport counters."""
    events_sent: int = 0
    events_received: int = 0
    batch_events_sent: int = 0
    batch_events_received: int = 0
    connection_errors: int = 0
    message_errors: int = 0
    active_subscriptions: int = 0
    uptime: float = 0.0
    average_latency: float = 0.0


class ITransport(ABC):
    """Interface for transport implementations."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport name."""
        pass

    @property
    @abstractmethod
    def connection_state(self) -> ConnectionState:
        """Current connection state."""
        pass

    @property
    def is_connected(self) -> bool:
        return self.connection_state == ConnectionState.CONNECTED

    @abstractmethod
    async def connect(self) -> None:
        """
        Connect to the remote peer.

        Raises:
            DestroyedError: If the transport was destroyed
            TransportTimeoutError: If the connect deadline expired
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect. Idempotent."""
        pass

    @abstractmethod
    async def send_event(self, event: ElementEvent) -> ElementEventResult:
        """
        Send a single event.

        Raises:
            NotConnectedError: If the transport is not connected
        """
        pass

    @abstractmethod
    async def send_batch_events(self, events: Sequence[ElementEvent]) -> BatchElementEventResult:
        """Send events as one batch; per-item failures are coded entries."""
        pass

    @abstractmethod
    async def subscribe_to_element(self, element_id: str, handler: EventHandler) -> Unsubscribe:
        """Receive inbound events for one element."""
        pass

    @abstractmethod
    async def subscribe_to_all(self, handler: EventHandler) -> Unsubscribe:
        """Receive every inbound event."""
        pass

    @abstractmethod
    async def subscribe_to_batch(self, handler: BatchEventHandler) -> Unsubscribe:
        """Receive inbound batches as ordered groups."""
        pass

    @abstractmethod
    def on_connection_state_change(self, handler: ConnectionStateHandler) -> Unsubscribe:
        """Observe connection state transitions."""
        pass

    @abstractmethod
    def on_error(self, handler: ErrorHandler) -> Unsubscribe:
        """Observe transport errors."""
        pass

    @abstractmethod
    def get_stats(self) -> TransportStats:
        """Get a statistics snapshot."""
        pass

    @abstractmethod
    async def destroy(self) -> None:
        """Permanently shut the transport down."""
        pass


class ITransportFactory(ABC):
    """Creates transports for the URL schemes it supports."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def supported_protocols(self) -> List[str]:
        """URL schemes handled by this factory."""
        pass

    @abstractmethod
    def create(self, url: str, config: Optional[Any] = None) -> ITransport:
        pass

    @abstractmethod
    def supports(self, url: str) -> bool:
        pass
