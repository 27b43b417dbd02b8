"""Root conftest for all tests - provides shared fixtures."""

import os

# Keep persisted state in memory unless a test asks for a file
# (must be set before config import)
os.environ["CV_STORAGE_PATH"] = ""

import pytest

from community_verifier.verification import (
    MemoryStore,
    VerificationRecord,
    reset_coordinator,
    reset_profile_checker,
    reset_record_store_client,
    reset_store,
    reset_trust_list,
    reset_verification_cache,
)


def _reset_singletons():
    reset_profile_checker()
    reset_coordinator()
    reset_record_store_client()
    reset_verification_cache()
    reset_trust_list()
    reset_store()


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset all module singletons before each test to ensure isolation."""
    _reset_singletons()
    yield
    _reset_singletons()


class FakeClock:
    """Settable clock for TTL tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


def make_record(issuer: str, subject: str, rkey: str = "3kabc") -> VerificationRecord:
    return VerificationRecord(
        issuer=issuer,
        subject=subject,
        uri=f"at://{issuer}/app.bsky.graph.verification/{rkey}",
        claimed_handle=f"{subject.split(':')[-1]}.bsky.social",
        created_at="2025-04-21T10:00:00.000Z",
    )


@pytest.fixture(name="make_record")
def make_record_fixture():
    """Factory for verification records."""
    return make_record
