"""
Resolution of trusted verifiers for a subject.

resolve(subject):
1. Read the trust list; if empty, return an empty result with no network.
2. For every principal concurrently: use a fresh cache entry or fetch all
   of the principal's verification records and cache them. A failing
   principal becomes a failed FetchOutcome; its siblings carry on.
3. A principal is added to the verifier list the moment one of its records
   names the subject (at most once per principal).
4. Join on every branch, then return the result.

Verifier order follows network completion, not trust-list order.

Concurrent resolve() calls for the same subject share one in-flight
resolution instead of fanning out twice. A call only joins a resolution
started against the same trust list, so a principal removed in between is
never reported by a later caller.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from community_verifier.core.config import VERIFICATION_COLLECTION

from .cache import VerificationCache, get_verification_cache
from .client import RecordStoreClient, get_record_store_client
from .exceptions import RecordStoreError
from .models import FetchOutcome, ResolutionResult, VerificationRecord
from .trust_list import TrustListStore, get_trust_list

log = logging.getLogger(__name__)

# (subject, force_refresh, trusted principals)
InFlightKey = Tuple[str, bool, Tuple[str, ...]]


def _describe_error(exc: BaseException) -> str:
    if isinstance(exc, RecordStoreError):
        return f"{exc.code}: {exc.message}"
    return f"{type(exc).__name__}: {exc}"


class ResolutionCoordinator:
    """Fans out cache-or-fetch lookups across trusted principals.

    Holds no per-subject state beyond the in-flight map; every caller gets
    its own ResolutionResult.
    """

    def __init__(
        self,
        trust_list: Optional[TrustListStore] = None,
        cache: Optional[VerificationCache] = None,
        client: Optional[RecordStoreClient] = None,
        collection: str = VERIFICATION_COLLECTION,
    ):
        self._trust_list = trust_list if trust_list is not None else get_trust_list()
        self._cache = cache if cache is not None else get_verification_cache()
        self._client = client if client is not None else get_record_store_client()
        self._collection = collection
        self._in_flight: Dict[InFlightKey, asyncio.Task] = {}

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def resolve(self, subject: str, force_refresh: bool = False) -> ResolutionResult:
        """Find which trusted principals have verified subject.

        Args:
            subject: Durable id of the identity being checked.
            force_refresh: Ignore fresh cache entries and refetch everyone.

        Returns:
            ResolutionResult with verifiers and one outcome per principal.
            Never raises because a principal's store failed.
        """
        principals = tuple(self._trust_list.list())
        key: InFlightKey = (subject, force_refresh, principals)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._resolve(subject, force_refresh, principals))
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            log.debug(f"Joining in-flight resolution for {subject}")

        # Shielded so a cancelled caller does not cancel the shared resolution
        result = await asyncio.shield(task)
        return replace(result, verifiers=list(result.verifiers), outcomes=list(result.outcomes))

    def _forget(self, key: InFlightKey, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _resolve(
        self, subject: str, force_refresh: bool, principals: Tuple[str, ...]
    ) -> ResolutionResult:
        if not principals:
            log.info("No trusted users to check for verifications")
            return ResolutionResult(subject=subject)

        log.info(f"Checking if any trusted users have verified {subject}")
        verifiers: List[str] = []

        async def check_principal(principal: str) -> FetchOutcome:
            try:
                records, from_cache = await self._records_for(principal, force_refresh)
            except Exception as e:
                log.warning(f"Error checking verifications from {principal}: {_describe_error(e)}")
                return FetchOutcome(principal=principal, success=False, error=_describe_error(e))

            for record in records:
                if record.subject == subject:
                    log.info(f"{subject} is verified by trusted user {principal}")
                    verifiers.append(principal)
                    break
            return FetchOutcome(principal=principal, success=True, from_cache=from_cache)

        outcomes = await asyncio.gather(*(check_principal(p) for p in principals))

        succeeded = sum(1 for o in outcomes if o.success)
        log.info(
            f"API calls completed: {len(outcomes)}, successful: {succeeded}, "
            f"failed: {len(outcomes) - succeeded}, "
            f"from cache: {sum(1 for o in outcomes if o.from_cache)}"
        )
        if not verifiers:
            log.info(f"{subject} is not verified by any trusted users")

        return ResolutionResult(subject=subject, verifiers=verifiers, outcomes=list(outcomes))

    async def _records_for(
        self, principal: str, force_refresh: bool
    ) -> Tuple[List[VerificationRecord], bool]:
        """Return (records, from_cache) for one principal."""
        if not force_refresh:
            entry = await self._cache.get_valid(principal)
            if entry is not None:
                return entry.records, True

        records = await self._client.fetch_all_records(principal, self._collection)
        await self._cache.put(principal, records)
        return records, False


# Module-level singleton
_coordinator: Optional[ResolutionCoordinator] = None


def get_coordinator() -> ResolutionCoordinator:
    """Get the module-level resolution coordinator singleton."""
    global _coordinator
    if _coordinator is None:
        _coordinator = ResolutionCoordinator()
    return _coordinator


def reset_coordinator() -> None:
    """Reset the module-level coordinator singleton (for testing)."""
    global _coordinator
    _coordinator = None
