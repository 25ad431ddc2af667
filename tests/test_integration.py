"""
Integration tests for the assembled element event stack.

These tests run complete systems with their dispatch loops, lifecycle
managers and transports together.
"""

import asyncio
from typing import Any, Dict, List, Mapping

import pytest

from element_events import (
    ApplicationConfig, ElementEvent, ElementEventSystem, ElementKind, EventMetadata,
    EventPriority, EventType, LifecycleState,
)
from element_events.core.errors import ErrorCode
from element_events.core.interfaces.content import IContentResolver
from element_events.infrastructure.config.models import EventManagerConfig, EventQueueConfig, TransportConfig
from element_events.infrastructure.transport import MemoryTransportFactory, TransportRegistry


class UppercaseResolver(IContentResolver):
    async def resolve_payload(self, source: Mapping[str, Any],
                              capabilities: Mapping[str, Any]) -> Dict[str, Any]:
        return {key: value.upper() if isinstance(value, str) else value for key, value in source.items()}


def system_config(url: str = "memory://integration", flush_interval: float = 0.01) -> ApplicationConfig:
    return ApplicationConfig(
        events=EventManagerConfig(queue=EventQueueConfig(flush_interval=flush_interval)),
        transport=TransportConfig(enabled=True, url=url, timeout=1.0, retry_delay=0.01),
    )


async def eventually(predicate: Any, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.fixture
def registry() -> TransportRegistry:
    registry = TransportRegistry()
    registry.register(MemoryTransportFactory())
    return registry


async def open_element(system: ElementEventSystem, element_id: str = "doc") -> None:
    lifecycle = system.lifecycle_manager
    element = await lifecycle.create_element(element_id, ElementKind.MARKDOWN, {"text": ""})
    await lifecycle.register_element(element)
    await lifecycle.activate_element(element_id)


class TestIntegration:
    """End-to-end scenarios."""

    @pytest.mark.asyncio
    async def test_dispatch_loop_delivers(self) -> None:
        config = ApplicationConfig(events=EventManagerConfig(queue=EventQueueConfig(flush_interval=0.01)))
        async with ElementEventSystem(config, content_resolver=UppercaseResolver()) as system:
            await open_element(system)
            delivered: List[ElementEvent] = []
            system.event_manager.subscribe("doc", delivered.append)

            result = await system.lifecycle_manager.update_element_content("doc", {"text": "draft"})
            await eventually(lambda: len(delivered) == 1)

            assert result.success is True
            assert delivered[0].data == {"payload": {"text": "DRAFT"}}
            assert system.lifecycle_manager.get_element("doc").content == {"text": "DRAFT"}

    @pytest.mark.asyncio
    async def test_two_systems_share_updates(self, registry: TransportRegistry) -> None:
        editor = ElementEventSystem(system_config(), registry=registry)
        viewer = ElementEventSystem(system_config(), registry=registry)

        async with editor, viewer:
            await open_element(editor)
            await open_element(viewer)
            seen: List[ElementEvent] = []
            viewer.event_manager.subscribe("doc", seen.append)

            await editor.lifecycle_manager.update_element_content("doc", {"text": "shared"})
            await eventually(lambda: len(seen) == 1)

            assert viewer.lifecycle_manager.get_element("doc").content == {"text": "shared"}
            assert seen[0].metadata.source.startswith("remote:")
            # The viewer never echoes what it received
            await asyncio.sleep(0.03)
            assert editor.bridge is not None and editor.bridge.get_stats()["received"] == 0

    @pytest.mark.asyncio
    async def test_remote_updates_respect_lifecycle(self, registry: TransportRegistry) -> None:
        editor = ElementEventSystem(system_config(), registry=registry)
        viewer = ElementEventSystem(system_config(), registry=registry)

        async with editor, viewer:
            await open_element(editor)
            await open_element(viewer)
            await viewer.lifecycle_manager.suspend_element("doc")

            await editor.lifecycle_manager.update_element_content("doc", {"text": "ignored"})
            await eventually(lambda: viewer.bridge is not None and viewer.bridge.get_stats()["rejected"] == 1)

            assert viewer.lifecycle_manager.get_element_state("doc") == LifecycleState.SUSPENDED
            assert viewer.lifecycle_manager.get_element("doc").content == {"text": ""}

    @pytest.mark.asyncio
    async def test_priority_order_within_tick(self) -> None:
        # Long interval so nothing dispatches until the explicit flush
        config = ApplicationConfig(events=EventManagerConfig(queue=EventQueueConfig(flush_interval=10.0)))
        async with ElementEventSystem(config) as system:
            for element_id in ("a", "b", "c"):
                await open_element(system, element_id)
            order: List[str] = []
            system.event_manager.subscribe_to_all(lambda event: order.append(event.element_id))

            for element_id, priority in (("a", EventPriority.LOW), ("b", EventPriority.HIGH),
                                         ("c", EventPriority.NORMAL)):
                await system.event_manager.send_event(ElementEvent(
                    element_id=element_id,
                    element_type=ElementKind.MARKDOWN,
                    event_type=EventType.UPDATE_PROPS,
                    data={"props": {"rank": element_id}},
                    metadata=EventMetadata(priority=priority),
                ))
            await system.event_manager.flush()

            assert order == ["b", "c", "a"]

    @pytest.mark.asyncio
    async def test_overflow_under_load(self) -> None:
        config = ApplicationConfig(events=EventManagerConfig(
            queue=EventQueueConfig(max_queue_size=3, flush_interval=10.0)))
        async with ElementEventSystem(config) as system:
            for i in range(5):
                await open_element(system, f"el-{i}")

            results = [
                await system.lifecycle_manager.update_element_properties(f"el-{i}", {"i": i})
                for i in range(5)
            ]

            assert [r.success for r in results] == [True, True, True, False, False]
            assert results[3].code == ErrorCode.OVERFLOW

            await system.event_manager.flush()
            assert system.event_manager.get_queue_stats()["total_queued"] == 0
            retry = await system.lifecycle_manager.update_element_properties("el-3", {"i": 3})
            assert retry.success is True

    @pytest.mark.asyncio
    async def test_transport_fault_and_recovery(self, registry: TransportRegistry) -> None:
        editor = ElementEventSystem(system_config(), registry=registry)
        viewer = ElementEventSystem(system_config(), registry=registry)

        async with editor, viewer:
            await open_element(editor)
            await open_element(viewer)
            transport = editor.transport
            assert transport is not None

            transport.simulate_fault()  # type: ignore[attr-defined]
            await eventually(lambda: transport.is_connected)

            await editor.lifecycle_manager.update_element_content("doc", {"text": "after fault"})
            await eventually(
                lambda: viewer.lifecycle_manager.get_element("doc").content == {"text": "after fault"})

            health = await editor.check_health()
            assert health['healthy'] is True
