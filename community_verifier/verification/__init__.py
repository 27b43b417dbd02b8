"""Verification resolution and caching.

Record store client, principal-keyed record cache, trust list, invalidation
and the coordinator that ties them together.
"""

from .cache import (
    CacheMetrics,
    VerificationCache,
    get_verification_cache,
    reset_verification_cache,
)
from .client import (
    RecordStoreClient,
    close_record_store_client,
    get_record_store_client,
    parse_record,
    parse_subject_from_uri,
    reset_record_store_client,
)
from .exceptions import DecodeError, FetchError, PaginationLimitExceeded, RecordStoreError
from .invalidator import Invalidator, remove_trusted_principal
from .models import (
    ActorSummary,
    CacheEntry,
    FetchOutcome,
    RecordPage,
    ResolutionResult,
    VerificationRecord,
    VerificationStatus,
)
from .profile import ProfileCheck, ProfileChecker, get_profile_checker, reset_profile_checker
from .resolver import ResolutionCoordinator, get_coordinator, reset_coordinator
from .storage import JsonFileStore, KeyValueStore, MemoryStore, get_store, reset_store
from .trust_list import TrustListStore, get_trust_list, normalize_handle, reset_trust_list

__all__ = [
    # Exceptions
    "RecordStoreError",
    "FetchError",
    "DecodeError",
    "PaginationLimitExceeded",
    # Models
    "ActorSummary",
    "CacheEntry",
    "FetchOutcome",
    "RecordPage",
    "ResolutionResult",
    "VerificationRecord",
    "VerificationStatus",
    # Storage
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "get_store",
    "reset_store",
    # Client
    "RecordStoreClient",
    "close_record_store_client",
    "get_record_store_client",
    "reset_record_store_client",
    "parse_record",
    "parse_subject_from_uri",
    # Cache
    "CacheMetrics",
    "VerificationCache",
    "get_verification_cache",
    "reset_verification_cache",
    # Trust list
    "TrustListStore",
    "get_trust_list",
    "reset_trust_list",
    "normalize_handle",
    # Invalidation
    "Invalidator",
    "remove_trusted_principal",
    # Resolution
    "ResolutionCoordinator",
    "get_coordinator",
    "reset_coordinator",
    "ProfileCheck",
    "ProfileChecker",
    "get_profile_checker",
    "reset_profile_checker",
]
