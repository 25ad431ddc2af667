"""
Application layer: assembles and runs the element event system.
"""

from .startup import ElementEventSystem, create_event_system

__all__ = ["ElementEventSystem", "create_event_system"]
