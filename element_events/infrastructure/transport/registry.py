"""
Transport registry.

Maps transport factories by name and picks the first factory that supports a
URL. Consumers receive a registry by reference; ``get_default_registry``
exists for callers that only need the built-in in-memory transport.
"""

from dataclasses import replace
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from loguru import logger

from ...core.interfaces.transport import ITransport, ITransportFactory
from ..config.models import TransportConfig
from .memory import InMemoryTransport, MemoryHub


class MemoryTransportFactory(ITransportFactory):
    """
    Creates InMemoryTransport instances.

    The URL netloc names the hub, so ``memory://room`` transports created by
    the same factory talk to each other. A ``latency`` query parameter sets
    the simulated latency in seconds.
    """

    SCHEMES = ["memory", "mock", "test"]

    def __init__(self) -> None:
        self._hubs: Dict[str, MemoryHub] = {}

    @property
    def name(self) -> str:
        return "memory"

    @property
    def supported_protocols(self) -> List[str]:
        return list(self.SCHEMES)

    def supports(self, url: str) -> bool:
        return urlparse(url).scheme.lower() in self.SCHEMES

    def get_hub(self, name: str) -> MemoryHub:
        hub = self._hubs.get(name)
        if hub is None:
            hub = self._hubs[name] = MemoryHub(name)
        return hub

    def create(self, url: str, config: Optional[Any] = None) -> InMemoryTransport:
        if not self.supports(url):
            raise ValueError(f"Unsupported transport url: {url}")

        parsed = urlparse(url)
        hub_name = parsed.netloc or "default"
        latency = float(parse_qs(parsed.query).get("latency", ["0"])[0])

        if isinstance(config, TransportConfig):
            transport_config = replace(config, url=url)
        elif isinstance(config, dict):
            transport_config = TransportConfig(**{**config, "url": url})
        else:
            transport_config = TransportConfig(url=url)

        return InMemoryTransport(
            transport_config,
            hub=self.get_hub(hub_name),
            name=f"{parsed.scheme}:{hub_name}",
            latency=latency,
        )


class TransportRegistry:
    """Registry of transport factories."""

    def __init__(self) -> None:
        self._factories: Dict[str, ITransportFactory] = {}

    def register(self, factory: ITransportFactory) -> None:
        if factory.name in self._factories:
            logger.warning(f"Replacing transport factory {factory.name}")
        self._factories[factory.name] = factory
        logger.debug(f"Registered transport factory {factory.name} for {factory.supported_protocols}")

    def unregister(self, name: str) -> bool:
        return self._factories.pop(name, None) is not None

    def get_factory(self, url: str) -> Optional[ITransportFactory]:
        """First registered factory that supports ``url``."""
        for factory in self._factories.values():
            if factory.supports(url):
                return factory
        return None

    def supports(self, url: str) -> bool:
        return self.get_factory(url) is not None

    def create(self, url: str, config: Optional[Any] = None) -> Optional[ITransport]:
        """
        Create a transport for ``url``.

        Returns:
            The transport, or None if no factory supports the URL
        """
        factory = self.get_factory(url)
        if factory is None:
            logger.warning(f"No transport factory supports {url}")
            return None
        return factory.create(url, config)

    def get_registered_factories(self) -> List[str]:
        return list(self._factories.keys())

    def get_supported_protocols(self) -> List[str]:
        protocols: List[str] = []
        for factory in self._factories.values():
            protocols.extend(p for p in factory.supported_protocols if p not in protocols)
        return protocols


_default_registry: Optional[TransportRegistry] = None


def get_default_registry() -> TransportRegistry:
    """Shared registry with the in-memory factory registered."""
    global _default_registry
    if _default_registry is None:
        _default_registry = TransportRegistry()
        _default_registry.register(MemoryTransportFactory())
    return _default_registry


def reset_default_registry() -> None:
    global _default_registry
    _default_registry = None


def create_transport(url: str, config: Optional[Any] = None) -> Optional[ITransport]:
    """Create a transport through the default registry."""
    return get_default_registry().create(url, config)
