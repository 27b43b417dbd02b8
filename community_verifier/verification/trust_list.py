"""Persisted list of trusted principals.

Ordered and duplicate-free; insertion order is the iteration order.
Removing a principal does not touch the verification cache. Callers
pair remove() with Invalidator.on_principal_removed().
"""

import logging
from typing import List, Optional

from community_verifier.core.config import TRUSTED_USERS_STORAGE_KEY

from .storage import KeyValueStore, get_store

log = logging.getLogger(__name__)


def normalize_handle(handle: str) -> str:
    """Strip whitespace and a leading '@' from a handle.

    Raises:
        ValueError: If nothing is left.
    """
    normalized = (handle or "").strip().lstrip("@").strip()
    if not normalized:
        raise ValueError("handle must not be empty")
    return normalized


class TrustListStore:
    """Ordered-unique set of trusted principal handles."""

    def __init__(self, store: Optional[KeyValueStore] = None):
        self._store = store if store is not None else get_store()

    def list(self) -> List[str]:
        """Trusted principals in insertion order."""
        users = self._store.get(TRUSTED_USERS_STORAGE_KEY)
        if not isinstance(users, list):
            if users is not None:
                log.warning("Discarding trust list that is not a JSON array")
            return []
        return [u for u in users if isinstance(u, str)]

    def add(self, principal: str) -> bool:
        """Append principal unless already present.

        Returns:
            True if the principal was added.
        """
        principal = normalize_handle(principal)
        users = self.list()
        if principal in users:
            return False
        users.append(principal)
        self._store.set(TRUSTED_USERS_STORAGE_KEY, users)
        log.info(f"Trusted principal added: {principal}")
        return True

    def remove(self, principal: str) -> bool:
        """Remove principal if present.

        Returns:
            True if the principal was removed.
        """
        principal = normalize_handle(principal)
        users = self.list()
        if principal not in users:
            return False
        self._store.set(TRUSTED_USERS_STORAGE_KEY, [u for u in users if u != principal])
        log.info(f"Trusted principal removed: {principal}")
        return True

    def __contains__(self, principal: str) -> bool:
        try:
            principal = normalize_handle(principal)
        except ValueError:
            return False
        return principal in self.list()

    def __len__(self) -> int:
        return len(self.list())


# Module-level singleton
_trust_list: Optional[TrustListStore] = None


def get_trust_list() -> TrustListStore:
    """Get the module-level trust list singleton."""
    global _trust_list
    if _trust_list is None:
        _trust_list = TrustListStore()
    return _trust_list


def reset_trust_list() -> None:
    """Reset the module-level trust list singleton (for testing)."""
    global _trust_list
    _trust_list = None
