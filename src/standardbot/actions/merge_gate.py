"""Merge readiness gate.

Merging is irreversible, so a merge only goes ahead once GitHub reports
the pull request ready:

1. Status gate: poll the combined commit status of the head commit.
   `success` passes, `failure` aborts at once, anything else (including a
   failed query) keeps polling. The first poll is immediate, the rest
   10 seconds apart; after 30 polls the gate times out.
2. Mergeability: poll the pull request until GitHub has computed
   `mergeable` (up to 5 polls, 2 seconds apart). `false` aborts.

Both loops are instances of poll_until().
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from standardbot.github.errors import ExternalCallError

if TYPE_CHECKING:
    from standardbot.clock import Clock
    from standardbot.github.client import GitHubCapability

logger = logging.getLogger(__name__)


class GateStatus(str, Enum):
    """State of a bounded polling loop."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounds of a polling loop.

    Attributes:
        max_attempts: Polls before giving up.
        interval_seconds: Wait between polls; the first poll is immediate.
    """

    max_attempts: int
    interval_seconds: float


@dataclass
class MergeGateState:
    """Progress of one polling loop."""

    max_attempts: int = 30
    poll_interval_ms: int = 10_000
    attempts_made: int = 0
    status: GateStatus = GateStatus.PENDING

    @property
    def finished(self) -> bool:
        """Whether the loop reached a terminal status."""
        return self.status != GateStatus.PENDING


class MergeAborted(Exception):
    """Raised when a merge must not go ahead."""

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        """Initialize the abort.

        Args:
            message: Why the merge was abandoned.
            attempts: Polls made before giving up.
        """
        super().__init__(message)
        self.attempts = attempts


class GateFailure(MergeAborted):
    """Status checks failed."""


class GateTimeout(MergeAborted):
    """Status checks did not finish within the allowed polls."""


class NotMergeable(MergeAborted):
    """GitHub reports the pull request cannot be merged."""


StatusCheck = Callable[[], Awaitable[GateStatus]]


async def poll_until(check: StatusCheck, policy: RetryPolicy, clock: Clock) -> MergeGateState:
    """Poll a check until it reports a terminal status or attempts run out.

    Args:
        check: Returns SUCCESS or FAILURE to stop, PENDING to keep polling.
        policy: Attempt limit and interval.
        clock: Clock to wait on between polls.

    Returns:
        Final state; status is TIMEOUT if the check never stopped the loop.
    """
    state = MergeGateState(
        max_attempts=policy.max_attempts,
        poll_interval_ms=int(policy.interval_seconds * 1000),
    )

    while state.attempts_made < state.max_attempts:
        if state.attempts_made > 0:
            await clock.sleep(policy.interval_seconds)

        state.attempts_made += 1
        outcome = await check()
        if outcome in (GateStatus.SUCCESS, GateStatus.FAILURE):
            state.status = outcome
            return state

    state.status = GateStatus.TIMEOUT
    return state


class MergeReadinessGate:
    """Waits until a pull request can be merged."""

    STATUS_POLICY = RetryPolicy(max_attempts=30, interval_seconds=10.0)
    MERGEABLE_POLICY = RetryPolicy(max_attempts=5, interval_seconds=2.0)

    def __init__(
        self,
        client: GitHubCapability,
        clock: Clock,
        *,
        status_policy: RetryPolicy | None = None,
        mergeable_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the gate.

        Args:
            client: GitHub client capability.
            clock: Clock to wait on between polls.
            status_policy: Override for the status check loop.
            mergeable_policy: Override for the mergeability loop.
        """
        self._client = client
        self._clock = clock
        self._status_policy = status_policy or self.STATUS_POLICY
        self._mergeable_policy = mergeable_policy or self.MERGEABLE_POLICY

    async def wait_for_checks(self, owner: str, repo: str, sha: str) -> MergeGateState:
        """Poll the combined status of a commit until checks settle.

        Returns:
            Final state: SUCCESS, FAILURE or TIMEOUT.
        """

        async def check() -> GateStatus:
            try:
                combined = await self._client.get_combined_status(owner, repo, sha)
            except ExternalCallError as e:
                logger.warning("Status query for %s/%s@%s failed: %s", owner, repo, sha[:7], e)
                return GateStatus.PENDING

            state = combined.get("state")
            if state == "success":
                return GateStatus.SUCCESS
            if state == "failure":
                return GateStatus.FAILURE
            return GateStatus.PENDING

        return await poll_until(check, self._status_policy, self._clock)

    async def wait_for_mergeable(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        """Poll a pull request until GitHub has computed its mergeability.

        Returns:
            The last pull request data fetched, with `mergeable` set to true.

        Raises:
            NotMergeable: If mergeability stays unknown or is false.
        """
        latest: dict[str, Any] = {}

        async def check() -> GateStatus:
            nonlocal latest
            latest = await self._client.get_pull_request(owner, repo, number)
            if latest.get("mergeable") is None:
                return GateStatus.PENDING
            return GateStatus.SUCCESS

        state = await poll_until(check, self._mergeable_policy, self._clock)
        if state.status == GateStatus.TIMEOUT:
            raise NotMergeable("not mergeable after retries", attempts=state.attempts_made)
        if latest.get("mergeable") is False:
            raise NotMergeable(
                f"pull request is not mergeable ({latest.get('mergeable_state', 'unknown')})",
                attempts=state.attempts_made,
            )
        return latest

    async def ensure_ready(
        self, owner: str, repo: str, number: int, sha: str
    ) -> dict[str, Any]:
        """Wait for passing checks, then for mergeability.

        Args:
            owner: Repository owner.
            repo: Repository name.
            number: Pull request number.
            sha: Head commit SHA whose checks gate the merge.

        Returns:
            Pull request data once it is mergeable.

        Raises:
            GateFailure: If checks failed.
            GateTimeout: If checks never finished.
            NotMergeable: If GitHub will not merge the pull request.
        """
        checks = await self.wait_for_checks(owner, repo, sha)
        target = f"{owner}/{repo}#{number}"

        if checks.status == GateStatus.FAILURE:
            raise GateFailure(
                f"status checks failed for {target}", attempts=checks.attempts_made
            )
        if checks.status == GateStatus.TIMEOUT:
            raise GateTimeout(
                f"status checks still pending for {target} after "
                f"{checks.attempts_made} polls",
                attempts=checks.attempts_made,
            )

        logger.info("Checks passed for %s after %d poll(s)", target, checks.attempts_made)
        return await self.wait_for_mergeable(owner, repo, number)
