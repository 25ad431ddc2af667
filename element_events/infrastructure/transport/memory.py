"""
In-memory reference transport.

Transports joined to the same MemoryHub deliver every sent event or batch to
every other connected peer on the hub. Useful for tests, demos and wiring two
event systems together inside one process.
"""

import asyncio
from typing import List, Optional, Sequence

from loguru import logger

from ...core.domain.events import ElementEvent
from ..config.models import TransportConfig
from .base import BaseTransport


class MemoryHub:
    """In-process broker joining in-memory transports."""

    def __init__(self, name: str = "default"):
        self.name = name
        self._peers: List["InMemoryTransport"] = []

    @property
    def peers(self) -> List["InMemoryTransport"]:
        return list(self._peers)

    def join(self, peer: "InMemoryTransport") -> None:
        if peer not in self._peers:
            self._peers.append(peer)
            logger.debug(f"{peer.name} joined hub {self.name}")

    def leave(self, peer: "InMemoryTransport") -> None:
        if peer in self._peers:
            self._peers.remove(peer)
            logger.debug(f"{peer.name} left hub {self.name}")

    async def publish(self, sender: "InMemoryTransport", event: ElementEvent) -> int:
        """Deliver one event to every other connected peer. Returns the receiver count."""
        receivers = [p for p in self._peers if p is not sender and p.is_connected]
        for peer in receivers:
            await peer._dispatch_inbound(event)
        return len(receivers)

    async def publish_batch(self, sender: "InMemoryTransport", events: Sequence[ElementEvent]) -> int:
        receivers = [p for p in self._peers if p is not sender and p.is_connected]
        for peer in receivers:
            await peer._dispatch_inbound_batch(events)
        return len(receivers)


class InMemoryTransport(BaseTransport):
    """
    Transport over a MemoryHub.

    Besides the ITransport contract it exposes hooks for driving tests:
    ``simulate_event``, ``simulate_batch_events``, ``simulate_fault``,
    ``fail_next_connects`` and a configurable ``latency``.
    """

    def __init__(self, config: Optional[TransportConfig] = None,
                 hub: Optional[MemoryHub] = None,
                 name: Optional[str] = None,
                 latency: float = 0.0):
        super().__init__(config, name)
        self._hub = hub or MemoryHub()
        self.latency = latency
        self._failing_connects = 0
        self._sent_events: List[ElementEvent] = []

    @property
    def hub(self) -> MemoryHub:
        return self._hub

    @property
    def sent_events(self) -> List[ElementEvent]:
        """Events put on the hub by this transport, oldest first."""
        return list(self._sent_events)

    def fail_next_connects(self, count: int) -> None:
        """Make the next ``count`` connection attempts fail."""
        self._failing_connects = count

    async def simulate_event(self, event: ElementEvent) -> None:
        """Inject an inbound event as if a peer had sent it."""
        self._ensure_alive()
        await self._dispatch_inbound(event)

    async def simulate_batch_events(self, events: Sequence[ElementEvent]) -> None:
        self._ensure_alive()
        await self._dispatch_inbound_batch(events)

    def simulate_fault(self, error: Optional[BaseException] = None) -> None:
        """Drop the connection as if the peer had gone away."""
        self._ensure_alive()
        self._hub.leave(self)
        self._handle_connection_fault(error or ConnectionError("Simulated connection loss"))

    async def _perform_connect(self) -> None:
        await self._delay()
        if self._failing_connects > 0:
            self._failing_connects -= 1
            raise ConnectionError(f"Simulated connect failure on hub {self._hub.name}")
        self._hub.join(self)

    async def _perform_disconnect(self) -> None:
        self._hub.leave(self)

    async def _perform_send(self, event: ElementEvent) -> None:
        await self._delay()
        self._sent_events.append(event)
        await self._hub.publish(self, event)

    async def _perform_send_batch(self, events: List[ElementEvent]) -> List[Optional[BaseException]]:
        await self._delay()
        self._sent_events.extend(events)
        await self._hub.publish_batch(self, events)
        return [None] * len(events)

    async def _delay(self) -> None:
        if self.latency > 0:
            await asyncio.sleep(self.latency)
