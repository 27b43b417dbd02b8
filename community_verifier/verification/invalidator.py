"""Cache invalidation driven by trust list edits."""

import logging
from typing import Optional

from .cache import VerificationCache, get_verification_cache
from .trust_list import TrustListStore, normalize_handle

log = logging.getLogger(__name__)


class Invalidator:
    """Purges verification cache entries when the trust list changes."""

    def __init__(self, cache: Optional[VerificationCache] = None):
        self._cache = cache if cache is not None else get_verification_cache()

    async def on_principal_removed(self, principal: str) -> bool:
        """Drop the removed principal's entry. Other entries are untouched."""
        removed = await self._cache.remove(principal)
        log.debug(f"Invalidated {principal} after trust list removal (had_entry={removed})")
        return removed

    async def on_principal_added(self, principal: str) -> None:
        """No-op: a newly trusted principal has no entry to go stale."""
        return None

    async def clear_all(self) -> int:
        """Wipe the whole verification cache."""
        return await self._cache.clear()


async def remove_trusted_principal(
    trust_list: TrustListStore,
    invalidator: Invalidator,
    principal: str,
) -> bool:
    """Remove principal from the trust list and purge its cache entry.

    The entry is purged even if the principal was not on the list, so a
    stale entry left by an earlier crash cannot linger.

    Returns:
        True if the principal was on the trust list.
    """
    principal = normalize_handle(principal)
    removed = trust_list.remove(principal)
    await invalidator.on_principal_removed(principal)
    return removed
