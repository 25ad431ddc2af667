"""
Component lifecycle interfaces.

Long-running parts of the system (the event manager's dispatch loop, the
assembled event system) start and stop through these contracts.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class IStartable(ABC):
    """Interface for components that can be started."""

    @abstractmethod
    async def start(self) -> None:
        """
        Start the component.

        Calling start on a running component is a no-op.
        """
        pass


class IStoppable(ABC):
    """Interface for components that can be stopped."""

    @abstractmethod
    async def stop(self) -> None:
        """
        Stop the component and release background tasks.

        Calling stop on a stopped component is a no-op.
        """
        pass


class IHealthCheckable(ABC):
    """Interface for components that can report their health status."""

    @abstractmethod
    async def check_health(self) -> Dict[str, Any]:
        """
        Report component health.

        Returns:
            Dict with at least:
            - 'healthy': bool
            - 'status': str describing current status
            - 'details': Dict with component specific counters
        """
        pass


class IComponent(IStartable, IStoppable, IHealthCheckable):
    """Base interface for startable, stoppable, health-checkable components."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the component name."""
        pass
