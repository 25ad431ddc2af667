"""
Tests for the element lifecycle manager.

This module tests the transition table as exposed through the manager,
lifecycle notifications, content updates through the event pipeline and
teardown.
"""

import asyncio
from typing import Any, Dict, List, Mapping, Tuple

import pytest

from element_events.core.domain.elements import (
    Element, ElementKind, ElementLifecycleEvent, LifecycleEventType, LifecycleState,
)
from element_events.core.errors import DestroyedError, DuplicateIdError, ErrorCode
from element_events.core.interfaces.content import IContentResolver
from element_events.core.services.event_manager import EventManager
from element_events.core.services.lifecycle_manager import LifecycleManager
from element_events.infrastructure.config.models import LifecycleConfig


class RecordingResolver(IContentResolver):
    """Content resolver that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.calls: List[Tuple[Dict[str, Any], Dict[str, Any]]] = []
        self.fail = False

    async def resolve_payload(self, source: Mapping[str, Any],
                              capabilities: Mapping[str, Any]) -> Dict[str, Any]:
        self.calls.append((dict(source), dict(capabilities)))
        if self.fail:
            raise RuntimeError("unreachable media")
        return {**source, "normalized": True}


@pytest.fixture
def event_manager() -> EventManager:
    return EventManager()


@pytest.fixture
def lifecycle(event_manager: EventManager) -> LifecycleManager:
    return LifecycleManager(event_manager)


@pytest.fixture
def transitions(lifecycle: LifecycleManager) -> List[ElementLifecycleEvent]:
    events: List[ElementLifecycleEvent] = []
    lifecycle.subscribe_to_lifecycle(events.append)
    return events


async def make_active(lifecycle: LifecycleManager, element_id: str = "el",
                      kind: ElementKind = ElementKind.MARKDOWN) -> Element:
    element = await lifecycle.create_element(element_id, kind, {"text": "v0"})
    await lifecycle.register_element(element)
    await lifecycle.activate_element(element_id)
    return element


class TestCreateAndRegister:
    """Test cases for creation and registration."""

    @pytest.mark.asyncio
    async def test_create(self, lifecycle: LifecycleManager,
                         transitions: List[ElementLifecycleEvent]) -> None:
        element = await lifecycle.create_element("a", ElementKind.IMAGE, {"src": "x.png"}, props={"alt": "x"})

        assert element.content == {"src": "x.png"}
        assert element.props == {"alt": "x"}
        assert lifecycle.get_element_state("a") == LifecycleState.CREATED
        assert len(transitions) == 1
        assert transitions[0].event_type == LifecycleEventType.CREATED
        assert transitions[0].previous_state is None

    @pytest.mark.asyncio
    async def test_duplicate_id(self, lifecycle: LifecycleManager) -> None:
        await lifecycle.create_element("a", ElementKind.IMAGE)
        with pytest.raises(DuplicateIdError):
            await lifecycle.create_element("a", ElementKind.VIDEO)

    @pytest.mark.asyncio
    async def test_register(self, lifecycle: LifecycleManager, event_manager: EventManager) -> None:
        element = await lifecycle.create_element("a", ElementKind.IMAGE)

        result = await lifecycle.register_element(element)

        assert result.success is True
        assert result.previous_state == LifecycleState.CREATED
        assert result.state == LifecycleState.REGISTERED
        assert event_manager.get_element("a") is element

    @pytest.mark.asyncio
    async def test_register_unknown(self, lifecycle: LifecycleManager) -> None:
        result = await lifecycle.register_element(Element(id="ghost", kind=ElementKind.IMAGE))
        assert result.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_register_kind_mismatch(self, lifecycle: LifecycleManager) -> None:
        await lifecycle.create_element("a", ElementKind.IMAGE)

        result = await lifecycle.register_element(Element(id="a", kind=ElementKind.VIDEO))

        assert result.code == ErrorCode.INTEGRITY_ERROR
        assert lifecycle.get_element_state("a") == LifecycleState.CREATED

    @pytest.mark.asyncio
    async def test_register_twice(self, lifecycle: LifecycleManager) -> None:
        element = await lifecycle.create_element("a", ElementKind.IMAGE)
        await lifecycle.register_element(element)

        result = await lifecycle.register_element(element)

        assert result.code == ErrorCode.STATE_ERROR
        assert result.state == LifecycleState.REGISTERED


class TestTransitions:
    """Test cases for activate, suspend and destroy."""

    @pytest.mark.asyncio
    async def test_activate_requires_registration(self, lifecycle: LifecycleManager) -> None:
        await lifecycle.create_element("a", ElementKind.IMAGE)

        result = await lifecycle.activate_element("a")

        assert result.code == ErrorCode.STATE_ERROR
        assert (await lifecycle.activate_element("ghost")).code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_activate_already_active(self, lifecycle: LifecycleManager,
                                           transitions: List[ElementLifecycleEvent]) -> None:
        await make_active(lifecycle)
        count = len(transitions)

        result = await lifecycle.activate_element("el")

        assert result.success is True
        assert len(transitions) == count

    @pytest.mark.asyncio
    async def test_suspend_and_resume(self, lifecycle: LifecycleManager) -> None:
        await make_active(lifecycle)

        assert (await lifecycle.suspend_element("el")).state == LifecycleState.SUSPENDED
        assert (await lifecycle.suspend_element("el")).code == ErrorCode.STATE_ERROR
        assert (await lifecycle.activate_element("el")).state == LifecycleState.ACTIVE

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self, lifecycle: LifecycleManager, event_manager: EventManager,
                                         transitions: List[ElementLifecycleEvent]) -> None:
        await make_active(lifecycle)

        first = await lifecycle.destroy_element("el")
        count = len(transitions)
        second = await lifecycle.destroy_element("el")

        assert first.success and second.success
        assert first.previous_state == LifecycleState.ACTIVE
        assert len(transitions) == count
        assert event_manager.get_element("el") is None
        assert lifecycle.get_element_state("el") == LifecycleState.DESTROYED
        assert (await lifecycle.activate_element("el")).code == ErrorCode.STATE_ERROR
        assert (await lifecycle.destroy_element("ghost")).code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_destroyed_id_needs_forget(self, lifecycle: LifecycleManager) -> None:
        await make_active(lifecycle)

        assert (await lifecycle.forget_element("el")).code == ErrorCode.STATE_ERROR
        await lifecycle.destroy_element("el")
        with pytest.raises(DuplicateIdError):
            await lifecycle.create_element("el", ElementKind.MARKDOWN)

        assert (await lifecycle.forget_element("el")).success is True
        assert lifecycle.get_element_state("el") is None
        await lifecycle.create_element("el", ElementKind.MARKDOWN)

    @pytest.mark.asyncio
    async def test_destroy_drops_pending_events(self, lifecycle: LifecycleManager,
                                                event_manager: EventManager) -> None:
        await make_active(lifecycle)
        await lifecycle.update_element_content("el", {"text": "v1"})
        await lifecycle.update_element_properties("el", {"width": 1})
        assert event_manager.get_queue_stats()["total_queued"] == 2

        await lifecycle.destroy_element("el")

        assert event_manager.get_queue_stats()["total_queued"] == 0


class TestContentUpdates:
    """Test cases for update_element_content."""

    @pytest.mark.asyncio
    async def test_successful_update(self, lifecycle: LifecycleManager, event_manager: EventManager,
                                     transitions: List[ElementLifecycleEvent]) -> None:
        element = await make_active(lifecycle)
        transitions.clear()
        updated: List[Element] = []
        lifecycle.subscribe_to_element_updates("el", updated.append)

        result = await lifecycle.update_element_content("el", {"text": "v1"}, metadata={"user": "u1"})

        assert result.success is True
        assert element.content == {"text": "v1"}
        assert [t.new_state for t in transitions] == [LifecycleState.UPDATING, LifecycleState.ACTIVE]
        assert transitions[0].metadata == {"user": "u1"}
        assert updated == [element]
        assert event_manager.get_queue_stats()["total_queued"] == 1

        await event_manager.flush()
        [entry] = event_manager.get_event_history("el")
        assert entry.event.data == {"payload": {"text": "v1"}}
        assert entry.event.metadata.source == "api"

    @pytest.mark.asyncio
    async def test_update_requires_active(self, lifecycle: LifecycleManager,
                                          transitions: List[ElementLifecycleEvent]) -> None:
        await make_active(lifecycle)
        await lifecycle.suspend_element("el")
        count = len(transitions)

        result = await lifecycle.update_element_content("el", {"text": "nope"})

        assert result.success is False
        assert result.code == ErrorCode.STATE_ERROR
        assert len(transitions) == count
        assert lifecycle.get_element_state("el") == LifecycleState.SUSPENDED

        unknown = await lifecycle.update_element_content("ghost", {"text": "x"})
        assert unknown.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_resolver_normalizes(self, event_manager: EventManager) -> None:
        resolver = RecordingResolver()
        lifecycle = LifecycleManager(event_manager, resolver,
                                     LifecycleConfig(capabilities={"maxWidth": 320}, update_source="editor"))
        element = await make_active(lifecycle)

        await lifecycle.update_element_content("el", {"text": "v1"})
        await event_manager.flush()

        assert resolver.calls == [({"text": "v1"}, {"maxWidth": 320})]
        assert element.content == {"text": "v1", "normalized": True}
        assert event_manager.get_event_history("el")[0].event.metadata.source == "editor"

    @pytest.mark.asyncio
    async def test_resolver_failure_moves_to_error(self, event_manager: EventManager) -> None:
        resolver = RecordingResolver()
        lifecycle = LifecycleManager(event_manager, resolver)
        transitions: List[ElementLifecycleEvent] = []
        lifecycle.subscribe_to_lifecycle(transitions.append)
        element = await make_active(lifecycle)
        transitions.clear()
        resolver.fail = True

        result = await lifecycle.update_element_content("el", {"text": "v1"})

        assert result.success is False
        assert result.code == ErrorCode.UNKNOWN_ERROR
        assert element.content == {"text": "v0"}
        assert lifecycle.get_element_state("el") == LifecycleState.ERROR
        assert [t.new_state for t in transitions] == [LifecycleState.UPDATING, LifecycleState.ERROR]
        assert transitions[1].metadata["error"] == "unreachable media"

        # error -> active through activate
        assert (await lifecycle.activate_element("el")).success is True

    @pytest.mark.asyncio
    async def test_rejected_event_moves_to_error(self) -> None:
        event_manager = EventManager(validate_event=lambda event: False)
        lifecycle = LifecycleManager(event_manager)
        await make_active(lifecycle)

        result = await lifecycle.update_element_content("el", {"text": "v1"})

        assert result.code == ErrorCode.VALIDATION_ERROR
        assert lifecycle.get_element_state("el") == LifecycleState.ERROR

    @pytest.mark.asyncio
    async def test_same_element_updates_are_serialized(self, event_manager: EventManager) -> None:
        class SlowResolver(IContentResolver):
            def __init__(self) -> None:
                self.active = 0
                self.max_active = 0

            async def resolve_payload(self, source: Mapping[str, Any],
                                      capabilities: Mapping[str, Any]) -> Dict[str, Any]:
                self.active += 1
                self.max_active = max(self.max_active, self.active)
                await asyncio.sleep(0.01)
                self.active -= 1
                return dict(source)

        resolver = SlowResolver()
        lifecycle = LifecycleManager(event_manager, resolver)
        element = await make_active(lifecycle)

        results = await asyncio.gather(
            lifecycle.update_element_content("el", {"text": "v1"}),
            lifecycle.update_element_content("el", {"text": "v2"}),
        )

        assert all(r.success for r in results)
        assert resolver.max_active == 1
        assert element.content == {"text": "v2"}

    @pytest.mark.asyncio
    async def test_update_properties(self, lifecycle: LifecycleManager, event_manager: EventManager) -> None:
        element = await make_active(lifecycle)

        result = await lifecycle.update_element_properties("el", {"width": 10})
        await event_manager.flush()

        assert result.success is True
        assert element.props == {"width": 10}
        assert lifecycle.get_element_state("el") == LifecycleState.ACTIVE
        assert (await lifecycle.update_element_properties("ghost", {})).code == ErrorCode.NOT_FOUND


class TestNotifications:
    """Test cases for lifecycle subscribers."""

    @pytest.mark.asyncio
    async def test_subscriber_error_does_not_abort(self, lifecycle: LifecycleManager) -> None:
        received: List[str] = []

        def broken(event: ElementLifecycleEvent) -> None:
            raise RuntimeError("subscriber bug")

        lifecycle.subscribe_to_lifecycle(broken)
        lifecycle.subscribe_to_lifecycle(lambda event: received.append(event.event_type.value))

        element = await lifecycle.create_element("a", ElementKind.IMAGE)
        result = await lifecycle.register_element(element)

        assert result.success is True
        assert received == ["created", "registered"]

    @pytest.mark.asyncio
    async def test_registration_order(self, lifecycle: LifecycleManager) -> None:
        order: List[str] = []
        lifecycle.subscribe_to_lifecycle(lambda event: order.append("first"))
        lifecycle.subscribe_to_lifecycle(lambda event: order.append("second"))

        await lifecycle.create_element("a", ElementKind.IMAGE)

        assert order == ["first", "second"]

    @pytest.mark.asyncio
    async def test_async_subscriber_scheduled(self, lifecycle: LifecycleManager) -> None:
        received: List[str] = []

        async def handler(event: ElementLifecycleEvent) -> None:
            received.append(event.element_id)

        lifecycle.subscribe_to_lifecycle(handler)
        await lifecycle.create_element("a", ElementKind.IMAGE)
        await asyncio.sleep(0)

        assert received == ["a"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, lifecycle: LifecycleManager) -> None:
        received: List[str] = []
        unsubscribe = lifecycle.subscribe_to_lifecycle(lambda event: received.append(event.element_id))

        await lifecycle.create_element("a", ElementKind.IMAGE)
        unsubscribe()
        await lifecycle.create_element("b", ElementKind.IMAGE)

        assert received == ["a"]


class TestIntrospection:
    @pytest.mark.asyncio
    async def test_stats_sum_to_tracked(self, lifecycle: LifecycleManager) -> None:
        await make_active(lifecycle, "a")
        await make_active(lifecycle, "b")
        await lifecycle.create_element("c", ElementKind.VIDEO)
        await lifecycle.suspend_element("b")

        stats = lifecycle.get_lifecycle_stats()

        assert stats["active"] == 1
        assert stats["suspended"] == 1
        assert stats["created"] == 1
        assert sum(stats.values()) == 3
        assert lifecycle.get_elements_by_state(LifecycleState.ACTIVE) == ["a"]

    @pytest.mark.asyncio
    async def test_unknown_ids_leave_no_locks(self, lifecycle: LifecycleManager) -> None:
        await lifecycle.activate_element("ghost")
        await lifecycle.suspend_element("ghost")
        await lifecycle.update_element_content("ghost", {"text": "x"})
        await lifecycle.update_element_properties("ghost", {"width": 1})
        await lifecycle.destroy_element("ghost")
        await lifecycle.forget_element("ghost")
        await lifecycle.register_element(Element(id="ghost", kind=ElementKind.IMAGE))

        assert lifecycle._locks == {}

    @pytest.mark.asyncio
    async def test_forget_drops_lock(self, lifecycle: LifecycleManager) -> None:
        await make_active(lifecycle)
        await lifecycle.destroy_element("el")
        assert "el" in lifecycle._locks

        await lifecycle.forget_element("el")

        assert "el" not in lifecycle._locks

    @pytest.mark.asyncio
    async def test_destroy_manager(self, lifecycle: LifecycleManager, event_manager: EventManager) -> None:
        await make_active(lifecycle)

        lifecycle.destroy()

        with pytest.raises(DestroyedError):
            await lifecycle.activate_element("el")
        with pytest.raises(DestroyedError):
            await lifecycle.create_element("x", ElementKind.IMAGE)
        with pytest.raises(DestroyedError):
            lifecycle.subscribe_to_lifecycle(lambda event: None)


class TestScenario:
    """Full lifecycle scenario."""

    @pytest.mark.asyncio
    async def test_full_sequence(self, lifecycle: LifecycleManager,
                                 transitions: List[ElementLifecycleEvent]) -> None:
        element = await lifecycle.create_element("doc", ElementKind.DOCUMENT, {"pages": 1})
        await lifecycle.register_element(element)
        await lifecycle.activate_element("doc")
        assert (await lifecycle.update_element_content("doc", {"pages": 2})).success
        await lifecycle.suspend_element("doc")
        failed = await lifecycle.update_element_content("doc", {"pages": 3})
        await lifecycle.activate_element("doc")
        await lifecycle.destroy_element("doc")

        assert failed.success is False
        assert element.content == {"pages": 2}
        assert [(t.previous_state, t.new_state) for t in transitions] == [
            (None, LifecycleState.CREATED),
            (LifecycleState.CREATED, LifecycleState.REGISTERED),
            (LifecycleState.REGISTERED, LifecycleState.ACTIVE),
            (LifecycleState.ACTIVE, LifecycleState.UPDATING),
            (LifecycleState.UPDATING, LifecycleState.ACTIVE),
            (LifecycleState.ACTIVE, LifecycleState.SUSPENDED),
            (LifecycleState.SUSPENDED, LifecycleState.ACTIVE),
            (LifecycleState.ACTIVE, LifecycleState.DESTROYED),
        ]
        assert [t.event_type.value for t in transitions] == [
            "created", "registered", "activated", "updating",
            "activated", "suspended", "activated", "destroyed",
        ]
