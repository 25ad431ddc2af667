"""
Application assembly.

ElementEventSystem builds the event manager, the lifecycle manager and the
optional transport wiring from an ApplicationConfig, and starts and stops
them in order.
"""

from typing import Any, Dict, Optional

from loguru import logger

from ..core.interfaces.content import IContentResolver
from ..core.interfaces.lifecycle import IComponent
from ..core.interfaces.transport import ITransport
from ..core.services.event_manager import EventManager, ValidateEventHook
from ..core.services.lifecycle_manager import LifecycleManager
from ..infrastructure.config.loader import ConfigLoader
from ..infrastructure.config.models import ApplicationConfig
from ..infrastructure.transport.bridge import TransportBridge
from ..infrastructure.transport.registry import TransportRegistry, get_default_registry


class ElementEventSystem(IComponent):
    """
    The assembled element event stack.

    Startup order is event manager, then transport bridge; shutdown runs in
    reverse.
    """

    def __init__(self, config: Optional[ApplicationConfig] = None,
                 content_resolver: Optional[IContentResolver] = None,
                 validate_event: Optional[ValidateEventHook] = None,
                 registry: Optional[TransportRegistry] = None):
        self._config = config or ApplicationConfig()
        self._registry = registry or get_default_registry()

        self._event_manager = EventManager(self._config.events, validate_event=validate_event)
        self._lifecycle_manager = LifecycleManager(
            self._event_manager, content_resolver, self._config.lifecycle)

        self._transport: Optional[ITransport] = None
        self._bridge: Optional[TransportBridge] = None
        if self._config.transport.enabled:
            url = self._config.transport.url
            transport = self._registry.create(url, self._config.transport)
            if transport is None:
                raise ValueError(f"No transport factory supports {url}")
            self._transport = transport
            self._bridge = TransportBridge(self._event_manager, transport)

        self._started = False
        self._shut_down = False

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> ApplicationConfig:
        return self._config

    @property
    def event_manager(self) -> EventManager:
        return self._event_manager

    @property
    def lifecycle_manager(self) -> LifecycleManager:
        return self._lifecycle_manager

    @property
    def transport(self) -> Optional[ITransport]:
        return self._transport

    @property
    def bridge(self) -> Optional[TransportBridge]:
        return self._bridge

    @property
    def registry(self) -> TransportRegistry:
        return self._registry

    async def start(self) -> None:
        if self._started:
            return

        logger.info(f"Starting {self._config.name} v{self._config.version}")
        await self._event_manager.start()

        if self._bridge is not None and self._config.transport.connect_on_start:
            try:
                await self._bridge.attach()
            except Exception as e:
                logger.error(f"Failed to attach transport {self._config.transport.url}: {e}")
                await self._event_manager.stop()
                raise

        self._started = True
        logger.info("Element event system started")

    async def stop(self) -> None:
        if not self._started:
            return

        logger.info("Stopping element event system...")
        if self._bridge is not None:
            self._bridge.detach()
        if self._transport is not None:
            try:
                await self._transport.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting transport: {e}")

        await self._event_manager.stop()
        self._started = False
        logger.info("Element event system stopped")

    async def shutdown(self) -> None:
        """Stop and destroy every component. The system cannot be restarted."""
        if self._shut_down:
            return
        await self.stop()
        self._lifecycle_manager.destroy()
        self._event_manager.destroy()
        if self._transport is not None:
            await self._transport.destroy()
        self._shut_down = True

    async def check_health(self) -> Dict[str, Any]:
        event_health = await self._event_manager.check_health()
        components: Dict[str, Any] = {
            'event_manager': event_health,
            'lifecycle': self._lifecycle_manager.get_lifecycle_stats() if not self._shut_down else {},
        }
        healthy = event_health['healthy'] and self._started

        if self._transport is not None:
            connected = self._transport.is_connected
            components['transport'] = {
                'url': self._config.transport.url,
                'state': self._transport.connection_state.value,
            }
            if self._bridge is not None:
                components['transport']['bridge'] = self._bridge.get_stats()
            if self._config.transport.connect_on_start:
                healthy = healthy and connected

        return {
            'healthy': healthy,
            'status': 'running' if self._started else 'stopped',
            'details': components,
        }

    async def __aenter__(self) -> "ElementEventSystem":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.shutdown()


def create_event_system(config_file: Optional[str] = None,
                        config: Optional[ApplicationConfig] = None,
                        **kwargs: Any) -> ElementEventSystem:
    """
    Build an ElementEventSystem.

    Args:
        config_file: Configuration file loaded when ``config`` is not given
        config: Ready configuration
        **kwargs: Passed to ElementEventSystem

    Returns:
        An unstarted system
    """
    if config is None:
        config = ConfigLoader().load_config(config_file)
    return ElementEventSystem(config, **kwargs)
