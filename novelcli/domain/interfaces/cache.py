"""Interface for caching mechanisms.

Defines the contract for storing, retrieving, and managing cached data,
partitioned into namespaces that each carry their own size limit and TTL.
Lookups never raise on a miss; they return the ``MISSING`` sentinel.
"""

import abc
from typing import Any, Dict


class _Missing:
    """Sentinel type returned on a cache miss."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


class CacheService(abc.ABC):
    """Abstract Base Class for namespaced caching operations."""

    @abc.abstractmethod
    def get(self, namespace: str, provider: str, operation: str, *params: Any) -> Any:
        """Retrieves an item from a namespace.

        Args:
            namespace: Cache namespace ('translation', 'api', 'content', 'scraping').
            provider: Provider that produced the value.
            operation: Operation name, part of the key.
            *params: Parameters of the operation, serialized into the key.

        Returns:
            The cached value if present and fresh, otherwise ``MISSING``.
        """
        pass

    @abc.abstractmethod
    def set(self, namespace: str, provider: str, operation: str, value: Any, *params: Any) -> None:
        """Stores an item, evicting the least recently used entry if full."""
        pass

    @abc.abstractmethod
    def clear_namespace(self, namespace: str) -> None:
        """Removes every entry from one namespace."""
        pass

    @abc.abstractmethod
    def clear_all(self) -> None:
        """Removes every entry from every namespace."""
        pass

    @abc.abstractmethod
    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        """Returns per-namespace statistics."""
        pass
