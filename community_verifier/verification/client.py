"""Record store client over XRPC.

Implements the three record store calls the resolver consumes:
- listRecords: one page of a principal's collection, cursor-paginated
- getRecord: one record, used to turn a handle into its durable id
- searchActorsTypeahead: actor lookup for handle autocomplete

Transport failures raise FetchError, malformed responses raise DecodeError.
Nothing here retries; the caller decides what a failure means.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from community_verifier.core.config import (
    GET_RECORD_METHOD,
    LIST_RECORDS_METHOD,
    MAX_RECORD_PAGES,
    PROFILE_COLLECTION,
    PROFILE_RECORD_KEY,
    RECORD_FETCH_TIMEOUT_SECONDS,
    RECORD_PAGE_SIZE,
    RECORD_STORE_BASE_URL,
    SEARCH_ACTORS_DEFAULT_LIMIT,
    SEARCH_ACTORS_MAX_LIMIT,
    SEARCH_ACTORS_METHOD,
    VERIFICATION_COLLECTION,
)

from .exceptions import DecodeError, FetchError, PaginationLimitExceeded
from .models import ActorSummary, RecordPage, VerificationRecord

log = logging.getLogger(__name__)


def parse_record(issuer: str, item: Any) -> VerificationRecord:
    """Build a VerificationRecord from one listRecords item.

    Items look like:
        {"uri": "at://did:plc:abc/app.bsky.graph.verification/3k...",
         "cid": "...",
         "value": {"subject": "did:plc:xyz", "handle": "...",
                   "displayName": "...", "createdAt": "..."}}

    Args:
        issuer: The principal whose collection the item came from.
        item: Decoded JSON item.

    Raises:
        DecodeError: If the item or its value is not an object, or the
            subject is missing.
    """
    if not isinstance(item, dict):
        raise DecodeError(f"Record from {issuer} is not an object")
    value = item.get("value")
    if not isinstance(value, dict):
        raise DecodeError(f"Record {item.get('uri', '?')} from {issuer} has no value")
    subject = value.get("subject")
    if not isinstance(subject, str) or not subject:
        raise DecodeError(f"Record {item.get('uri', '?')} from {issuer} has no subject")

    return VerificationRecord(
        issuer=issuer,
        subject=subject,
        uri=item.get("uri") or "",
        claimed_handle=value.get("handle"),
        display_name=value.get("displayName"),
        created_at=value.get("createdAt"),
    )


def parse_subject_from_uri(uri: Any) -> str:
    """Extract the durable id (authority) from a record URI.

    at://did:plc:abc123/app.bsky.actor.profile/self -> did:plc:abc123

    Raises:
        DecodeError: If the URI is not an at:// URI with an authority.
    """
    if not isinstance(uri, str) or not uri.startswith("at://"):
        raise DecodeError(f"Not a record URI: {uri!r}")
    authority = uri.split("/")[2]
    if not authority:
        raise DecodeError(f"Record URI has no authority: {uri!r}")
    return authority


class RecordStoreClient:
    """Async client for the record store's XRPC endpoints.

    By default each call opens its own httpx.AsyncClient. Used as an async
    context manager, the instance opens one pooled client and closes it on
    exit. Pass http_client to share a pool (or a mock transport in tests);
    the caller keeps ownership and closes it.
    """

    def __init__(
        self,
        base_url: str = RECORD_STORE_BASE_URL,
        timeout: float = RECORD_FETCH_TIMEOUT_SECONDS,
        page_size: int = RECORD_PAGE_SIZE,
        max_pages: int = MAX_RECORD_PAGES,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Record store host, e.g. https://bsky.social.
            timeout: Per-request timeout in seconds.
            page_size: Records requested per listRecords page.
            max_pages: Page ceiling per principal; 0 disables it.
            http_client: Optional shared client.
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._page_size = page_size
        self._max_pages = max_pages
        self._http_client = http_client
        self._owned_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "RecordStoreClient":
        if self._http_client is None and self._owned_client is None:
            self._owned_client = httpx.AsyncClient(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the pooled client this instance opened, if any.

        An injected http_client is left for its owner to close.
        """
        if self._owned_client is not None:
            await self._owned_client.aclose()
            self._owned_client = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def max_pages(self) -> int:
        return self._max_pages

    async def _get_json(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET an XRPC method and return the decoded JSON object."""
        url = f"{self._base_url}/xrpc/{method}"
        # httpx would send None as an empty parameter
        params = {k: v for k, v in params.items() if v is not None}

        try:
            client = self._http_client if self._http_client is not None else self._owned_client
            if client is not None:
                response = await client.get(url, params=params)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
        except httpx.TimeoutException:
            raise FetchError(f"Timeout after {self._timeout}s calling {method}")
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"HTTP {e.response.status_code} from {method}: {e.response.reason_phrase}"
            )
        except httpx.RequestError as e:
            raise FetchError(f"Request to {method} failed: {e}")

        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(f"Invalid JSON from {method}: {e}")
        if not isinstance(data, dict):
            raise DecodeError(f"Expected JSON object from {method}, got {type(data).__name__}")
        return data

    async def list_records(
        self,
        principal: str,
        collection: str = VERIFICATION_COLLECTION,
        cursor: Optional[str] = None,
    ) -> RecordPage:
        """Fetch one page of records owned by principal.

        Returns:
            RecordPage; cursor is None on the last page.

        Raises:
            FetchError: On transport failure.
            DecodeError: On a malformed page. Malformed items are skipped.
        """
        data = await self._get_json(
            LIST_RECORDS_METHOD,
            {
                "repo": principal,
                "collection": collection,
                "limit": self._page_size,
                "cursor": cursor,
            },
        )

        items = data.get("records", [])
        if items is None:
            items = []
        if not isinstance(items, list):
            raise DecodeError(f"records from {principal} is not a list")

        next_cursor = data.get("cursor")
        if next_cursor is not None and not isinstance(next_cursor, str):
            raise DecodeError(f"cursor from {principal} is not a string")

        records = []
        for item in items:
            try:
                records.append(parse_record(principal, item))
            except DecodeError as e:
                # One bad item cannot match a subject; keep the rest of the page
                log.warning(f"Skipping malformed record from {principal}: {e.message}")
        return RecordPage(records=records, cursor=next_cursor or None)

    async def fetch_all_records(
        self,
        principal: str,
        collection: str = VERIFICATION_COLLECTION,
    ) -> List[VerificationRecord]:
        """Fetch every record in principal's collection.

        Follows the cursor until a page omits it. Pages are requested one
        after another since each needs the previous page's cursor.

        Returns:
            All records, in the order the store returned them.

        Raises:
            FetchError: On transport failure of any page.
            DecodeError: On a malformed page.
            PaginationLimitExceeded: If max_pages pages were fetched and the
                store still returned a cursor, or a cursor repeated.
        """
        records: List[VerificationRecord] = []
        seen_cursors = set()
        cursor: Optional[str] = None
        pages = 0

        while True:
            if self._max_pages and pages >= self._max_pages:
                raise PaginationLimitExceeded(principal, pages)

            page = await self.list_records(principal, collection, cursor)
            pages += 1
            records.extend(page.records)

            if not page.cursor:
                break
            if page.cursor in seen_cursors:
                log.warning(f"Record store repeated cursor for {principal} after {pages} pages")
                raise PaginationLimitExceeded(principal, pages)
            seen_cursors.add(page.cursor)
            cursor = page.cursor

        log.debug(f"Fetched {len(records)} records for {principal} in {pages} pages")
        return records

    async def get_record(
        self,
        principal: str,
        collection: str,
        rkey: str,
    ) -> Dict[str, Any]:
        """Fetch a single record.

        Returns:
            Decoded response with at least 'uri'.

        Raises:
            FetchError: On transport failure.
            DecodeError: If the response has no uri.
        """
        data = await self._get_json(
            GET_RECORD_METHOD,
            {"repo": principal, "collection": collection, "rkey": rkey},
        )
        if not isinstance(data.get("uri"), str):
            raise DecodeError(f"getRecord for {principal} returned no uri")
        return data

    async def resolve_subject(self, handle: str) -> str:
        """Resolve a handle to its durable id via the profile record.

        Raises:
            FetchError: On transport failure.
            DecodeError: If the profile URI cannot be parsed.
        """
        data = await self.get_record(handle, PROFILE_COLLECTION, PROFILE_RECORD_KEY)
        subject = parse_subject_from_uri(data["uri"])
        log.debug(f"Resolved {handle} to {subject}")
        return subject

    async def search_actors(
        self,
        query: str,
        limit: int = SEARCH_ACTORS_DEFAULT_LIMIT,
    ) -> List[ActorSummary]:
        """Typeahead search for actors by handle prefix.

        An empty query returns no actors without a network call.
        """
        query = query.strip()
        if not query:
            return []
        limit = max(1, min(limit, SEARCH_ACTORS_MAX_LIMIT))

        data = await self._get_json(SEARCH_ACTORS_METHOD, {"q": query, "limit": limit})
        actors = data.get("actors", [])
        if not isinstance(actors, list):
            raise DecodeError("actors is not a list")

        results = []
        for actor in actors:
            if not isinstance(actor, dict) or not isinstance(actor.get("handle"), str):
                continue
            results.append(
                ActorSummary(
                    handle=actor["handle"],
                    display_name=actor.get("displayName"),
                    avatar=actor.get("avatar"),
                )
            )
        return results


# Module-level singleton
_record_store_client: Optional[RecordStoreClient] = None


def get_record_store_client() -> RecordStoreClient:
    """Get the module-level record store client singleton."""
    global _record_store_client
    if _record_store_client is None:
        _record_store_client = RecordStoreClient()
    return _record_store_client


def reset_record_store_client() -> None:
    """Reset the module-level client singleton (for testing)."""
    global _record_store_client
    _record_store_client = None


async def close_record_store_client() -> None:
    """Close and drop the module-level client singleton."""
    global _record_store_client
    if _record_store_client is not None:
        await _record_store_client.aclose()
        _record_store_client = None
