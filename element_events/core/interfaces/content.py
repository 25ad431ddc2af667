"""
Content resolution collaborator contract.

Fetching and normalizing media payloads lives outside this package. The
lifecycle manager only needs something that turns a payload source into
normalized content, or fails.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping


class IContentResolver(ABC):
    """Normalizes new element content before it is committed."""

    @abstractmethod
    async def resolve_payload(self, source: Mapping[str, Any],
                              capabilities: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Resolve a payload source into normalized content.

        Args:
            source: Partial content submitted for an element
            capabilities: Declared client preferences and limits

        Returns:
            Normalized content mapping

        Raises:
            Exception: Any failure; the update is rejected and the element
            moves to the error state.
        """
        pass
