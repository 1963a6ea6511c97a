"""Caching policies for secret listings.

The resolver always goes through a cache policy. NoCredentialCache re-lists
the store on every lookup (always fresh). TTLCredentialCache keeps the
listing of each namespace for a fixed number of seconds, so a rotated
credential may be served stale for up to that long.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from src.relay.credentials.models import SecretDocument


logger = logging.getLogger(__name__)

Loader = Callable[[str], List[SecretDocument]]


class CredentialCache:
    """Base cache policy: no caching at all."""

    def get_or_load(self, namespace: str, loader: Loader) -> List[SecretDocument]:
        """Return the listing for namespace, calling loader when needed."""
        return loader(namespace)

    def invalidate(self, namespace: Optional[str] = None) -> None:
        """Drop cached listings for one namespace, or for all of them."""


class NoCredentialCache(CredentialCache):
    """Explicit name for the default, uncached policy."""


class TTLCredentialCache(CredentialCache):
    """Time-boxed memoization of secret listings keyed by namespace.

    Failed loads are not cached. The lock only guards the entry table; the
    loader runs outside of it.

    Attributes:
        ttl_seconds: How long a listing stays valid.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, List[SecretDocument]]] = {}
        self._lock = threading.Lock()

    def get_or_load(self, namespace: str, loader: Loader) -> List[SecretDocument]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(namespace)
        if entry is not None and entry[0] > now:
            return entry[1]

        documents = loader(namespace)
        with self._lock:
            self._entries[namespace] = (now + self.ttl_seconds, documents)
        logger.debug(
            "Cached %d secrets for namespace %s",
            len(documents),
            namespace,
        )
        return documents

    def invalidate(self, namespace: Optional[str] = None) -> None:
        with self._lock:
            if namespace is None:
                self._entries.clear()
            else:
                self._entries.pop(namespace, None)


def create_credential_cache(ttl_seconds: float) -> CredentialCache:
    """Return a TTL cache for positive ttl_seconds, else the uncached policy."""
    if ttl_seconds > 0:
        return TTLCredentialCache(ttl_seconds)
    return NoCredentialCache()
