"""
Transport implementations, the transport registry and event manager wiring.
"""

from .base import BaseTransport, TransportMetrics
from .memory import InMemoryTransport, MemoryHub
from .registry import (
    MemoryTransportFactory, TransportRegistry,
    create_transport, get_default_registry, reset_default_registry,
)
from .bridge import TransportBridge

__all__ = [
    "BaseTransport",
    "TransportMetrics",
    "InMemoryTransport",
    "MemoryHub",
    "MemoryTransportFactory",
    "TransportRegistry",
    "create_transport",
    "get_default_registry",
    "reset_default_registry",
    "TransportBridge",
]
