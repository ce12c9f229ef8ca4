"""
Endpoint Pool - round-robin provider addresses.

Every search or scrape request takes the next address from the pool.
The cursor only moves forward and is shared by everyone holding the same
pool instance, so inject one pool into every executor that should
rotate together.
"""

import itertools
from typing import Iterable, List, Optional

from config.settings import settings


class EndpointPool:
    """
    Ordered provider hosts with a monotonic cursor.

    Example:
        >>> pool = EndpointPool(["a.example.com", "b.example.com"])
        >>> pool.next()
        'https://a.example.com'
        >>> pool.next()
        'https://b.example.com'
        >>> pool.next()
        'https://a.example.com'
    """

    def __init__(self, endpoints: Iterable[str]):
        cleaned = [e.strip().rstrip("/") for e in endpoints if e and e.strip()]
        if not cleaned:
            raise ValueError("EndpointPool needs at least one endpoint")

        self._endpoints: List[str] = [self._with_scheme(e) for e in cleaned]
        self._cursor = itertools.count()

    @staticmethod
    def _with_scheme(endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"https://{endpoint}"

    @classmethod
    def from_settings(cls, endpoints: Optional[List[str]] = None) -> "EndpointPool":
        return cls(endpoints or settings.SEARCH_SCRAPE_ENDPOINTS)

    @property
    def endpoints(self) -> List[str]:
        return list(self._endpoints)

    def next(self) -> str:
        """Base URL for the next request."""
        index = next(self._cursor)
        return self._endpoints[index % len(self._endpoints)]

    def __len__(self) -> int:
        return len(self._endpoints)


__all__ = ["EndpointPool"]
