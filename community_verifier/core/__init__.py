# Core - configuration and shared exceptions

from community_verifier.core.exceptions import CommunityVerifierError, StorageError

__all__ = [
    "CommunityVerifierError",
    "StorageError",
]
