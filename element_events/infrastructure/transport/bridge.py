"""
Wiring between an EventManager and a transport.

Locally originated events flushed by the event manager are forwarded to the
transport. Inbound events are tagged with a ``remote:<transport>`` source and
injected through ``EventManager.deliver_remote_event``; the tag keeps them
from being forwarded back out.
"""

from typing import Dict, List

from loguru import logger

from ...core.domain.events import REMOTE_SOURCE_PREFIX, ElementEvent, Unsubscribe
from ...core.interfaces.transport import ITransport
from ...core.services.event_manager import EventManager


def is_remote(event: ElementEvent) -> bool:
    return event.is_remote


class TransportBridge:
    """Forwards events between one event manager and one transport."""

    def __init__(self, event_manager: EventManager, transport: ITransport):
        self._event_manager = event_manager
        self._transport = transport
        self._unsubscribes: List[Unsubscribe] = []
        self._attached = False
        self._stats: Dict[str, int] = {
            'forwarded': 0,
            'forward_failures': 0,
            'dropped_offline': 0,
            'received': 0,
            'rejected': 0,
        }

    @property
    def transport(self) -> ITransport:
        return self._transport

    @property
    def is_attached(self) -> bool:
        return self._attached

    async def attach(self) -> None:
        """Connect the transport if needed and start forwarding in both directions."""
        if self._attached:
            return
        if not self._transport.is_connected:
            await self._transport.connect()

        self._unsubscribes.append(await self._transport.subscribe_to_all(self._on_remote_event))
        self._unsubscribes.append(await self._transport.subscribe_to_batch(self._on_remote_batch))
        self._unsubscribes.append(self._event_manager.subscribe_to_batch(self._forward_batch))
        self._attached = True
        logger.info(f"Transport bridge attached to {self._transport.name}")

    def detach(self) -> None:
        for unsubscribe in reversed(self._unsubscribes):
            unsubscribe()
        self._unsubscribes.clear()
        if self._attached:
            self._attached = False
            logger.info(f"Transport bridge detached from {self._transport.name}")

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

    async def _forward_batch(self, events: List[ElementEvent]) -> None:
        local = [event for event in events if not is_remote(event)]
        if not local:
            return
        if not self._transport.is_connected:
            self._stats['dropped_offline'] += len(local)
            logger.debug(f"Transport {self._transport.name} offline; not forwarding {len(local)} event(s)")
            return

        try:
            if len(local) == 1:
                await self._transport.send_event(local[0])
                self._stats['forwarded'] += 1
            else:
                result = await self._transport.send_batch_events(local)
                self._stats['forwarded'] += len(result.successful)
                self._stats['forward_failures'] += len(result.failed)
        except Exception as e:
            self._stats['forward_failures'] += len(local)
            logger.warning(f"Failed to forward {len(local)} event(s) to {self._transport.name}: {e}")

    async def _on_remote_event(self, event: ElementEvent) -> None:
        if not is_remote(event):
            event = event.with_source(f"{REMOTE_SOURCE_PREFIX}{self._transport.name}")
        self._stats['received'] += 1

        result = await self._event_manager.deliver_remote_event(event)
        if not result.success:
            self._stats['rejected'] += 1
            logger.debug(f"Remote event for {event.element_id} rejected: {result.error}")

    async def _on_remote_batch(self, events: List[ElementEvent]) -> None:
        for event in events:
            await self._on_remote_event(event)
