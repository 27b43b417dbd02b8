"""Data structures for verification records, cache entries and results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class VerificationStatus(str, Enum):
    """Three-valued outcome of a resolution.

    INDETERMINATE separates "nobody we trust vouches for this subject" from
    "we could not reach any of the people we trust".
    """
    VERIFIED = "VERIFIED"              # At least one trusted principal matched
    UNVERIFIED = "UNVERIFIED"          # Checked, no trusted principal matched
    INDETERMINATE = "INDETERMINATE"    # Every trusted principal failed


@dataclass(frozen=True)
class VerificationRecord:
    """A verification claim issued by a principal about a subject.

    Attributes:
        issuer: Principal that owns the record's collection.
        subject: Durable id of the verified identity.
        uri: Record URI (issuer + record key); this is the record's identity.
        claimed_handle: Handle the issuer saw for the subject, if recorded.
        display_name: Display name the issuer saw, if recorded.
        created_at: Record creation timestamp as written by the issuer.
    """

    issuer: str
    subject: str
    uri: str = ""
    claimed_handle: Optional[str] = None
    display_name: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issuer": self.issuer,
            "subject": self.subject,
            "uri": self.uri,
            "claimedHandle": self.claimed_handle,
            "displayName": self.display_name,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationRecord":
        return cls(
            issuer=data["issuer"],
            subject=data["subject"],
            uri=data.get("uri", ""),
            claimed_handle=data.get("claimedHandle"),
            display_name=data.get("displayName"),
            created_at=data.get("createdAt"),
        )


@dataclass
class RecordPage:
    """One page of a listRecords response."""

    records: List[VerificationRecord]
    cursor: Optional[str] = None


@dataclass
class ActorSummary:
    """Actor returned by typeahead search."""

    handle: str
    display_name: Optional[str] = None
    avatar: Optional[str] = None


@dataclass
class CacheEntry:
    """Cached record set for one principal.

    Attributes:
        principal: The principal whose collection was fetched.
        records: Every record fetched, in store order.
        fetched_at: Unix timestamp of the fetch that produced the records.
    """

    principal: str
    records: List[VerificationRecord]
    fetched_at: float

    def to_dict(self) -> Dict[str, Any]:
        """Persisted form: {records, timestamp}."""
        return {
            "records": [r.to_dict() for r in self.records],
            "timestamp": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, principal: str, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            principal=principal,
            records=[VerificationRecord.from_dict(r) for r in data["records"]],
            fetched_at=float(data["timestamp"]),
        )


@dataclass
class FetchOutcome:
    """Per-principal result of one fan-out branch."""

    principal: str
    success: bool
    error: Optional[str] = None
    from_cache: bool = False


@dataclass
class ResolutionResult:
    """Verifier list for one subject.

    verifiers is ordered by when each principal's match was found, which
    depends on network timing. Compare it as a set.
    """

    subject: str
    verifiers: List[str] = field(default_factory=list)
    outcomes: List[FetchOutcome] = field(default_factory=list)

    @property
    def is_verified(self) -> bool:
        return bool(self.verifiers)

    @property
    def status(self) -> VerificationStatus:
        if self.verifiers:
            return VerificationStatus.VERIFIED
        if self.outcomes and not any(o.success for o in self.outcomes):
            return VerificationStatus.INDETERMINATE
        return VerificationStatus.UNVERIFIED

    @property
    def failed_principals(self) -> List[str]:
        return [o.principal for o in self.outcomes if not o.success]
