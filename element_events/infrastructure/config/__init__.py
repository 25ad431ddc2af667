"""
Configuration models and loading.
"""

from .models import (
    ApplicationConfig, EventManagerConfig, EventQueueConfig,
    LifecycleConfig, LoggingConfig, TransportConfig,
)
from .loader import ConfigLoader

__all__ = [
    "ApplicationConfig",
    "EventManagerConfig",
    "EventQueueConfig",
    "LifecycleConfig",
    "LoggingConfig",
    "TransportConfig",
    "ConfigLoader",
]
