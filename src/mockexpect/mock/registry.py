"""
mockexpect Route Registry

Ordered, per-method collection of the expectations still waiting for a
request. Insertion order is matching priority.
"""

import itertools
import logging
from typing import Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .expectation import Expectation

SUPPORTED_METHODS = ('GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'HEAD', 'OPTIONS', 'TRACE')

logger = logging.getLogger("mockexpect.mock.registry")


class RouteRegistry:
    """
    Registered expectations keyed by HTTP method.

    Example:
        registry = RouteRegistry()
        registry.add(expectation)
        registry.first('GET', '/users')   # oldest expectation for the route
    """

    def __init__(self):
        self._routes: Dict[str, List['Expectation']] = {}
        self._counter = itertools.count()

    def __len__(self) -> int:
        return sum(len(slot) for slot in self._routes.values())

    def __contains__(self, expectation: 'Expectation') -> bool:
        return any(e is expectation for e in self._routes.get(expectation.method, []))

    def next_index(self) -> int:
        """Registration order index for a new expectation."""
        return next(self._counter)

    def add(self, expectation: 'Expectation'):
        """Append an expectation to the slot of its method."""
        self._routes.setdefault(expectation.method, []).append(expectation)
        logger.debug(f"Registered {expectation.method} {expectation.path} (#{expectation.index})")

    def first(self, method: str, path: str) -> Optional['Expectation']:
        """Oldest expectation still registered for the exact (method, path)."""
        for expectation in self._routes.get(method.upper(), []):
            if expectation.path == path:
                return expectation
        return None

    def remove(self, expectation: 'Expectation') -> bool:
        """
        Remove one expectation by identity.

        Returns:
            True if it was registered
        """
        slot = self._routes.get(expectation.method, [])
        for position, candidate in enumerate(slot):
            if candidate is expectation:
                del slot[position]
                return True
        return False

    def pending(self, method: Optional[str] = None) -> List['Expectation']:
        """Registered expectations in registration order."""
        if method is not None:
            return list(self._routes.get(method.upper(), []))
        everything = [e for slot in self._routes.values() for e in slot]
        return sorted(everything, key=lambda e: e.index)

    def clear(self):
        """Drop every expectation of every method."""
        count = len(self)
        self._routes = {}
        logger.debug(f"Cleared {count} pending expectations")
