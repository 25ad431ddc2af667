"""
Core interfaces defining the contracts for the major system components.

These interfaces keep the managers independent of concrete transports and
content resolvers.
"""

from .lifecycle import IStartable, IStoppable, IHealthCheckable, IComponent
from .content import IContentResolver
from .transport import (
    ConnectionState, TransportStats, ITransport, ITransportFactory,
    EventHandler, BatchEventHandler, ConnectionStateHandler, ErrorHandler,
)

__all__ = [
    "IStartable",
    "IStoppable",
    "IHealthCheckable",
    "IComponent",
    "IContentResolver",
    "ConnectionState",
    "TransportStats",
    "ITransport",
    "ITransportFactory",
    "EventHandler",
    "BatchEventHandler",
    "ConnectionStateHandler",
    "ErrorHandler",
]
