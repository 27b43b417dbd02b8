"""
Community verifications API models.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from .models import VerificationStatus


# =============================================================================
# Error Codes
# =============================================================================

class ErrorCode:
    """Error code registry for record store and persistence failures."""
    # Transport layer
    RECORD_FETCH_FAILED = "RECORD_FETCH_FAILED"
    RECORD_DECODE_FAILED = "RECORD_DECODE_FAILED"
    PAGINATION_LIMIT_EXCEEDED = "PAGINATION_LIMIT_EXCEEDED"

    # Identity layer
    SUBJECT_RESOLUTION_FAILED = "SUBJECT_RESOLUTION_FAILED"

    # Persistence layer
    STORAGE_CORRUPT = "STORAGE_CORRUPT"


class ErrorDetail(BaseModel):
    """Error detail returned by the HTTP surface."""
    code: str
    message: str
    recoverable: bool


# =============================================================================
# Request Models
# =============================================================================

class TrustedPrincipalRequest(BaseModel):
    """Request body for POST /trusted."""
    handle: str


class ResolveRequest(BaseModel):
    """Request body for POST /resolve.

    Exactly one of subject (durable id) or handle must be given. A handle is
    resolved to its durable id before the trusted principals are consulted.
    """
    subject: Optional[str] = None
    handle: Optional[str] = None
    force_refresh: bool = False

    @model_validator(mode="after")
    def _one_identifier(self) -> "ResolveRequest":
        if bool(self.subject) == bool(self.handle):
            raise ValueError("provide exactly one of 'subject' or 'handle'")
        return self


class LogLevelRequest(BaseModel):
    level: str


# =============================================================================
# Response Models
# =============================================================================

class FetchOutcomeModel(BaseModel):
    """Per-principal outcome of one resolution."""
    principal: str
    success: bool
    from_cache: bool = False
    error: Optional[str] = None


class ResolutionResponse(BaseModel):
    """Response body for POST /resolve and GET /profile/{handle}."""
    subject: str
    handle: Optional[str] = None
    status: VerificationStatus
    verifiers: List[str] = Field(default_factory=list)
    outcomes: List[FetchOutcomeModel] = Field(default_factory=list)
    applied: Optional[bool] = None


class TrustedListResponse(BaseModel):
    principals: List[str] = Field(default_factory=list)


class ActorSummaryModel(BaseModel):
    handle: str
    display_name: Optional[str] = None
    avatar: Optional[str] = None


class SearchActorsResponse(BaseModel):
    actors: List[ActorSummaryModel] = Field(default_factory=list)
