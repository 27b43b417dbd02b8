"""Record store exceptions mapped to error codes.

Every one of these is confined to the principal whose fetch raised it;
the resolution coordinator turns them into failed fetch outcomes.
"""

from community_verifier.core.exceptions import CommunityVerifierError

from .api_models import ErrorCode


class RecordStoreError(CommunityVerifierError):
    """Base exception for record store operations.

    Carries an error code from ErrorCode.
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class FetchError(RecordStoreError):
    """Transport failure talking to the record store.

    Maps to RECORD_FETCH_FAILED.
    Used when:
    - Network timeout
    - HTTP error status
    - Connection or protocol error
    """

    def __init__(self, message: str = "Record fetch failed"):
        super().__init__(ErrorCode.RECORD_FETCH_FAILED, message)


class DecodeError(RecordStoreError):
    """Response was not well-formed.

    Maps to RECORD_DECODE_FAILED.
    Used when:
    - Body is not JSON
    - records/cursor have unexpected types
    - A record is missing its subject
    - A record URI cannot be parsed
    """

    def __init__(self, message: str = "Record decode failed"):
        super().__init__(ErrorCode.RECORD_DECODE_FAILED, message)


class PaginationLimitExceeded(RecordStoreError):
    """Record store kept returning a cursor past the page ceiling.

    Maps to PAGINATION_LIMIT_EXCEEDED. Also raised when the store hands back
    a cursor it already returned, which would otherwise loop forever.
    """

    def __init__(self, principal: str, pages: int):
        self.principal = principal
        self.pages = pages
        super().__init__(
            ErrorCode.PAGINATION_LIMIT_EXCEEDED,
            f"Pagination for {principal} did not terminate after {pages} pages",
        )
