"""Profile checks with superseding of stale results.

Viewing a profile means: resolve the handle to its durable id, then ask the
coordinator who has verified that id. A user can move on to another profile
before the first check finishes. Each check takes a token from a monotonic
counter; only the check holding the newest token may update the current
display state. Older checks still return their result to their own caller.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .client import RecordStoreClient, get_record_store_client
from .models import ResolutionResult
from .resolver import ResolutionCoordinator, get_coordinator
from .trust_list import normalize_handle

log = logging.getLogger(__name__)


@dataclass
class ProfileCheck:
    """Outcome of checking one profile.

    Attributes:
        handle: Handle the check was started for.
        subject: Durable id the handle resolved to.
        token: Token issued when the check started.
        result: Verifiers found for subject.
        applied: True if this check became the current display state.
    """

    handle: str
    subject: str
    token: int
    result: ResolutionResult
    applied: bool = False


class ProfileChecker:
    """Runs profile checks and keeps the latest one as current."""

    def __init__(
        self,
        client: Optional[RecordStoreClient] = None,
        coordinator: Optional[ResolutionCoordinator] = None,
    ):
        self._client = client if client is not None else get_record_store_client()
        self._coordinator = coordinator if coordinator is not None else get_coordinator()
        self._latest_token = 0
        self._current: Optional[ProfileCheck] = None

    @property
    def current(self) -> Optional[ProfileCheck]:
        """The check currently on display, if any."""
        return self._current

    @property
    def latest_token(self) -> int:
        return self._latest_token

    def begin(self) -> int:
        """Issue a new token and clear what is on display."""
        self._latest_token += 1
        self._current = None
        return self._latest_token

    def is_current(self, token: int) -> bool:
        return token == self._latest_token

    def apply(self, check: ProfileCheck) -> bool:
        """Make check the current display state if its token is the newest.

        Returns:
            True if applied, False if a newer check superseded it.
        """
        if not self.is_current(check.token):
            log.info(
                f"Discarding superseded check for {check.handle} "
                f"(token={check.token}, latest={self._latest_token})"
            )
            return False
        self._current = check
        return True

    async def check(self, handle: str, force_refresh: bool = False) -> ProfileCheck:
        """Check who has verified the profile behind handle.

        Raises:
            ValueError: If handle is empty.
            RecordStoreError: If the handle cannot be resolved to a durable id.
        """
        handle = normalize_handle(handle)
        token = self.begin()
        log.debug(f"Profile check for {handle} started (token={token})")

        subject = await self._client.resolve_subject(handle)
        result = await self._coordinator.resolve(subject, force_refresh=force_refresh)

        check = ProfileCheck(handle=handle, subject=subject, token=token, result=result)
        check.applied = self.apply(check)
        return check

    def reset(self) -> None:
        """Leave the profile: supersede any running check and clear display."""
        self.begin()


# Module-level singleton
_profile_checker: Optional[ProfileChecker] = None


def get_profile_checker() -> ProfileChecker:
    """Get the module-level profile checker singleton."""
    global _profile_checker
    if _profile_checker is None:
        _profile_checker = ProfileChecker()
    return _profile_checker


def reset_profile_checker() -> None:
    """Reset the module-level profile checker singleton (for testing)."""
    global _profile_checker
    _profile_checker = None
