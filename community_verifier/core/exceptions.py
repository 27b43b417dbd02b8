"""Base exception classes for the community verifications service."""


class CommunityVerifierError(Exception):
    """Base exception for all community verifier errors."""
    pass


class StorageError(CommunityVerifierError):
    """Persisted state could not be read or written.

    Raised when the backing file holds something other than a JSON object,
    or a stored value has the wrong shape for its key.
    """
    pass
