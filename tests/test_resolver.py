"""Tests for ResolutionCoordinator.

Uses a mocked RecordStoreClient so the fan-out, cache interplay and
failure isolation can be checked without a network.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from community_verifier.core.config import VERIFICATION_COLLECTION
from community_verifier.verification.api_models import ErrorCode
from community_verifier.verification.cache import VerificationCache
from community_verifier.verification.client import RecordStoreClient
from community_verifier.verification.exceptions import FetchError, PaginationLimitExceeded
from community_verifier.verification.models import VerificationStatus
from community_verifier.verification.resolver import (
    ResolutionCoordinator,
    get_coordinator,
    reset_coordinator,
)
from community_verifier.verification.trust_list import TrustListStore

DAY = 24 * 60 * 60


def _fake_client(records_by_principal, errors=None):
    """Build a client whose fetch_all_records serves canned data.

    records_by_principal maps principal -> list of records;
    errors maps principal -> exception to raise.
    """
    errors = errors or {}

    async def fetch_all_records(principal, collection):
        if principal in errors:
            raise errors[principal]
        return list(records_by_principal.get(principal, []))

    client = MagicMock()
    client.fetch_all_records = AsyncMock(side_effect=fetch_all_records)
    return client


def _fetched_principals(client):
    return [c.args[0] for c in client.fetch_all_records.await_args_list]


@pytest.fixture
def trust_list(store):
    return TrustListStore(store)


@pytest.fixture
def cache(store, clock):
    return VerificationCache(store=store, ttl_seconds=DAY, clock=clock)


@pytest.fixture
def alice_and_bob(trust_list):
    trust_list.add("alice")
    trust_list.add("bob")
    return trust_list


class TestEmptyTrustList:
    """Resolution with nobody trusted."""

    @pytest.mark.asyncio
    async def test_returns_empty_without_network(self, trust_list, cache):
        client = _fake_client({})
        coordinator = ResolutionCoordinator(trust_list, cache, client)

        result = await coordinator.resolve("did:1")

        assert result.subject == "did:1"
        assert result.verifiers == []
        assert result.outcomes == []
        assert result.status == VerificationStatus.UNVERIFIED
        client.fetch_all_records.assert_not_awaited()


class TestResolve:
    """Core resolve() behavior."""

    @pytest.mark.asyncio
    async def test_partial_failure_scenario(self, alice_and_bob, cache, make_record):
        client = _fake_client(
            {"alice": [make_record("alice", "did:1"), make_record("alice", "did:2", "r2")]},
            errors={"bob": FetchError("connection refused")},
        )
        coordinator = ResolutionCoordinator(alice_and_bob, cache, client)

        result = await coordinator.resolve("did:1")

        assert result.verifiers == ["alice"]
        assert [(o.principal, o.success) for o in result.outcomes] == [
            ("alice", True),
            ("bob", False),
        ]
        assert result.status == VerificationStatus.VERIFIED
        assert result.failed_principals == ["bob"]
        assert result.outcomes[1].error.startswith(ErrorCode.RECORD_FETCH_FAILED)

        miss = await coordinator.resolve("did:3")
        assert miss.verifiers == []
        assert miss.status == VerificationStatus.UNVERIFIED

    @pytest.mark.asyncio
    async def test_fetches_verification_collection(self, alice_and_bob, cache):
        client = _fake_client({})
        await ResolutionCoordinator(alice_and_bob, cache, client).resolve("did:1")

        for call in client.fetch_all_records.await_args_list:
            assert call.args[1] == VERIFICATION_COLLECTION

    @pytest.mark.asyncio
    async def test_one_verifier_entry_per_principal(self, trust_list, cache, make_record):
        trust_list.add("alice")
        client = _fake_client(
            {
                "alice": [
                    make_record("alice", "did:1", "r1"),
                    make_record("alice", "did:1", "r2"),
                    make_record("alice", "did:1", "r3"),
                ]
            }
        )

        result = await ResolutionCoordinator(trust_list, cache, client).resolve("did:1")

        assert result.verifiers == ["alice"]

    @pytest.mark.asyncio
    async def test_multiple_verifiers_compared_as_set(self, trust_list, cache, make_record):
        for handle in ["alice", "bob", "carol"]:
            trust_list.add(handle)
        client = _fake_client(
            {
                "alice": [make_record("alice", "did:1")],
                "bob": [make_record("bob", "did:9")],
                "carol": [make_record("carol", "did:1")],
            }
        )

        result = await ResolutionCoordinator(trust_list, cache, client).resolve("did:1")

        assert set(result.verifiers) == {"alice", "carol"}
        assert len(result.verifiers) == 2

    @pytest.mark.asyncio
    async def test_failure_isolation(self, trust_list, cache, make_record):
        """Verifiers equal the matches among principals that did not fail."""
        for handle in ["alice", "bob", "carol", "dave"]:
            trust_list.add(handle)
        client = _fake_client(
            {
                "alice": [make_record("alice", "did:1")],
                "carol": [make_record("carol", "did:1")],
                "dave": [make_record("dave", "did:2")],
            },
            errors={"bob": FetchError("HTTP 500"), "carol": FetchError("timeout")},
        )

        result = await ResolutionCoordinator(trust_list, cache, client).resolve("did:1")

        assert set(result.verifiers) == {"alice"}
        assert set(result.failed_principals) == {"bob", "carol"}
        assert len(result.outcomes) == 4

    @pytest.mark.asyncio
    async def test_outcomes_follow_trust_list_order(self, trust_list, cache):
        for handle in ["carol", "alice", "bob"]:
            trust_list.add(handle)
        client = _fake_client({})

        result = await ResolutionCoordinator(trust_list, cache, client).resolve("did:1")

        assert [o.principal for o in result.outcomes] == ["carol", "alice", "bob"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_failed_outcome(self, alice_and_bob, cache):
        client = _fake_client({}, errors={"alice": RuntimeError("boom")})

        result = await ResolutionCoordinator(alice_and_bob, cache, client).resolve("did:1")

        assert result.failed_principals == ["alice"]
        assert result.outcomes[0].error == "RuntimeError: boom"

    @pytest.mark.asyncio
    async def test_pagination_ceiling_becomes_failed_outcome(self, alice_and_bob, cache, make_record):
        client = _fake_client(
            {"bob": [make_record("bob", "did:1")]},
            errors={"alice": PaginationLimitExceeded("alice", 50)},
        )

        result = await ResolutionCoordinator(alice_and_bob, cache, client).resolve("did:1")

        assert result.verifiers == ["bob"]
        assert result.outcomes[0].success is False
        assert result.outcomes[0].error.startswith(ErrorCode.PAGINATION_LIMIT_EXCEEDED)
        assert await cache.get("alice") is None

    @pytest.mark.asyncio
    async def test_malformed_record_does_not_hide_valid_match(self, trust_list, cache):
        trust_list.add("alice")
        page = {
            "records": [
                {"uri": "at://alice/x/1", "value": {"subject": "did:1"}},
                {"uri": "at://alice/x/2", "value": {"subject": {"bad": 1}}},
            ]
        }
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=page))
        )
        client = RecordStoreClient(base_url="https://pds.example.com", http_client=http_client)

        result = await ResolutionCoordinator(trust_list, cache, client).resolve("did:1")
        await http_client.aclose()

        assert result.verifiers == ["alice"]
        assert result.outcomes[0].success is True
        assert [r.subject for r in (await cache.get("alice")).records] == ["did:1"]

    @pytest.mark.asyncio
    async def test_indeterminate_when_every_principal_fails(self, alice_and_bob, cache):
        client = _fake_client(
            {}, errors={"alice": FetchError("down"), "bob": FetchError("down")}
        )

        result = await ResolutionCoordinator(alice_and_bob, cache, client).resolve("did:1")

        assert result.verifiers == []
        assert result.status == VerificationStatus.INDETERMINATE
        assert result.is_verified is False

    @pytest.mark.asyncio
    async def test_branches_run_concurrently(self, alice_and_bob, cache):
        """alice only finishes once bob has started; a sequential walk would hang."""
        bob_started = asyncio.Event()

        async def fetch_all_records(principal, collection):
            if principal == "alice":
                await bob_started.wait()
            else:
                bob_started.set()
            return []

        client = MagicMock()
        client.fetch_all_records = AsyncMock(side_effect=fetch_all_records)
        coordinator = ResolutionCoordinator(alice_and_bob, cache, client)

        result = await asyncio.wait_for(coordinator.resolve("did:1"), timeout=2)

        assert [o.success for o in result.outcomes] == [True, True]

    @pytest.mark.asyncio
    async def test_verifier_order_follows_completion(self, alice_and_bob, cache, make_record):
        bob_done = asyncio.Event()

        async def fetch_all_records(principal, collection):
            if principal == "alice":
                await bob_done.wait()
                await asyncio.sleep(0)
                return [make_record("alice", "did:1")]
            bob_done.set()
            return [make_record("bob", "did:1")]

        client = MagicMock()
        client.fetch_all_records = AsyncMock(side_effect=fetch_all_records)

        result = await ResolutionCoordinator(alice_and_bob, cache, client).resolve("did:1")

        assert result.verifiers == ["bob", "alice"]
        assert [o.principal for o in result.outcomes] == ["alice", "bob"]


class TestCacheInterplay:
    """Fresh cache entries suppress network calls."""

    @pytest.mark.asyncio
    async def test_fetched_records_are_cached(self, alice_and_bob, cache, clock, make_record):
        client = _fake_client({"alice": [make_record("alice", "did:1")]})

        await ResolutionCoordinator(alice_and_bob, cache, client).resolve("did:1")

        alice = await cache.get("alice")
        assert [r.subject for r in alice.records] == ["did:1"]
        assert alice.fetched_at == clock.now
        bob = await cache.get("bob")
        assert bob.records == []

    @pytest.mark.asyncio
    async def test_fresh_entry_suppresses_fetch(self, alice_and_bob, cache, make_record):
        await cache.put("alice", [make_record("alice", "did:1")])
        client = _fake_client({})

        result = await ResolutionCoordinator(alice_and_bob, cache, client).resolve("did:1")

        assert _fetched_principals(client) == ["bob"]
        assert result.verifiers == ["alice"]
        assert result.outcomes[0].from_cache is True
        assert result.outcomes[1].from_cache is False

    @pytest.mark.asyncio
    async def test_second_resolve_is_served_from_cache(self, alice_and_bob, cache, make_record):
        client = _fake_client({"alice": [make_record("alice", "did:1")]})
        coordinator = ResolutionCoordinator(alice_and_bob, cache, client)

        first = await coordinator.resolve("did:1")
        client.fetch_all_records.reset_mock()
        second = await coordinator.resolve("did:1")

        client.fetch_all_records.assert_not_awaited()
        assert set(second.verifiers) == set(first.verifiers) == {"alice"}
        assert all(o.from_cache for o in second.outcomes)

    @pytest.mark.asyncio
    async def test_other_subject_reuses_cached_records(self, alice_and_bob, cache, make_record):
        client = _fake_client({"alice": [make_record("alice", "did:1"), make_record("alice", "did:2", "r2")]})
        coordinator = ResolutionCoordinator(alice_and_bob, cache, client)

        await coordinator.resolve("did:1")
        client.fetch_all_records.reset_mock()
        result = await coordinator.resolve("did:2")

        client.fetch_all_records.assert_not_awaited()
        assert result.verifiers == ["alice"]

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, alice_and_bob, cache, clock, make_record):
        await cache.put("alice", [make_record("alice", "did:1")])
        await cache.put("bob", [])
        clock.advance(DAY)
        client = _fake_client({"alice": [make_record("alice", "did:2", "r2")]})

        result = await ResolutionCoordinator(alice_and_bob, cache, client).resolve("did:1")

        assert sorted(_fetched_principals(client)) == ["alice", "bob"]
        assert result.verifiers == []
        entry = await cache.get("alice")
        assert [r.subject for r in entry.records] == ["did:2"]
        assert entry.fetched_at == clock.now

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_previous_entry(self, alice_and_bob, cache, clock, make_record):
        await cache.put("alice", [make_record("alice", "did:1")])
        clock.advance(DAY + 1)
        before = await cache.get("alice")
        client = _fake_client({}, errors={"alice": FetchError("down")})

        result = await ResolutionCoordinator(alice_and_bob, cache, client).resolve("did:1")

        assert result.failed_principals == ["alice"]
        assert await cache.get("alice") == before

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_fresh_entries(self, alice_and_bob, cache, make_record):
        await cache.put("alice", [make_record("alice", "did:1")])
        await cache.put("bob", [])
        client = _fake_client({"bob": [make_record("bob", "did:1")]})

        result = await ResolutionCoordinator(alice_and_bob, cache, client).resolve(
            "did:1", force_refresh=True
        )

        assert sorted(_fetched_principals(client)) == ["alice", "bob"]
        assert result.verifiers == ["bob"]
        assert not any(o.from_cache for o in result.outcomes)

    @pytest.mark.asyncio
    async def test_removed_principal_is_not_consulted(self, alice_and_bob, cache, make_record):
        await cache.put("alice", [make_record("alice", "did:1")])
        await cache.put("bob", [make_record("bob", "did:1")])
        alice_and_bob.remove("alice")
        client = _fake_client({})

        result = await ResolutionCoordinator(alice_and_bob, cache, client).resolve("did:1")

        assert result.verifiers == ["bob"]
        assert [o.principal for o in result.outcomes] == ["bob"]


class TestSingleFlight:
    """Concurrent resolutions of the same subject share one fan-out."""

    @pytest.mark.asyncio
    async def test_concurrent_resolves_fetch_once(self, alice_and_bob, cache, make_record):
        client = _fake_client({"alice": [make_record("alice", "did:1")]})
        coordinator = ResolutionCoordinator(alice_and_bob, cache, client)

        first, second = await asyncio.gather(
            coordinator.resolve("did:1"), coordinator.resolve("did:1")
        )

        assert sorted(_fetched_principals(client)) == ["alice", "bob"]
        assert first.verifiers == second.verifiers == ["alice"]
        assert first is not second
        assert coordinator.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_callers_get_independent_copies(self, alice_and_bob, cache, make_record):
        client = _fake_client({"alice": [make_record("alice", "did:1")]})
        coordinator = ResolutionCoordinator(alice_and_bob, cache, client)

        first, second = await asyncio.gather(
            coordinator.resolve("did:1"), coordinator.resolve("did:1")
        )
        first.verifiers.append("mallory")

        assert second.verifiers == ["alice"]

    @pytest.mark.asyncio
    async def test_different_subjects_do_not_share(self, alice_and_bob, cache):
        client = _fake_client({})
        coordinator = ResolutionCoordinator(alice_and_bob, cache, client, collection="c")

        await asyncio.gather(
            coordinator.resolve("did:1", force_refresh=True),
            coordinator.resolve("did:2", force_refresh=True),
        )

        assert client.fetch_all_records.await_count == 4

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_resolution(self, alice_and_bob, cache):
        release = asyncio.Event()

        async def fetch_all_records(principal, collection):
            await release.wait()
            return []

        client = MagicMock()
        client.fetch_all_records = AsyncMock(side_effect=fetch_all_records)
        coordinator = ResolutionCoordinator(alice_and_bob, cache, client)

        first = asyncio.ensure_future(coordinator.resolve("did:1"))
        second = asyncio.ensure_future(coordinator.resolve("did:1"))
        await asyncio.sleep(0)
        assert coordinator.in_flight_count == 1

        first.cancel()
        release.set()
        result = await second

        assert first.cancelled()
        assert [o.success for o in result.outcomes] == [True, True]
        assert client.fetch_all_records.await_count == 2

    @pytest.mark.asyncio
    async def test_call_after_trust_list_edit_does_not_join(self, alice_and_bob, cache, make_record):
        """A principal removed mid-flight is not reported to later callers."""
        release = asyncio.Event()

        async def fetch_all_records(principal, collection):
            await release.wait()
            return [make_record(principal, "did:1")]

        client = MagicMock()
        client.fetch_all_records = AsyncMock(side_effect=fetch_all_records)
        coordinator = ResolutionCoordinator(alice_and_bob, cache, client)

        first = asyncio.ensure_future(coordinator.resolve("did:1", force_refresh=True))
        await asyncio.sleep(0)
        alice_and_bob.remove("alice")
        second = asyncio.ensure_future(coordinator.resolve("did:1", force_refresh=True))
        await asyncio.sleep(0)
        assert coordinator.in_flight_count == 2

        release.set()
        first_result, second_result = await asyncio.gather(first, second)

        assert set(first_result.verifiers) == {"alice", "bob"}
        assert second_result.verifiers == ["bob"]


class TestGetCoordinator:
    """Tests for the singleton accessor."""

    def test_returns_same_instance(self):
        assert get_coordinator() is get_coordinator()

    def test_reset_creates_new_instance(self):
        first = get_coordinator()
        reset_coordinator()
        assert get_coordinator() is not first
