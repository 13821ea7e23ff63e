"""Shared pytest fixtures for standard-bot tests.

This module provides common fixtures for:
- Temporary rule files
- Virtual time (ManualClock)
- An in-memory GitHub client that records every call
- Sample events
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
import yaml

from standardbot.clock import ManualClock
from standardbot.config import parse_config
from standardbot.github.events import (
    CommentInfo,
    Event,
    EventKind,
    PullRequestInfo,
    TargetKind,
)
from standardbot.rules.ruleset import RuleSet

if TYPE_CHECKING:
    from collections.abc import Callable, Generator, Sequence


# ============================================================================
# Fake GitHub client
# ============================================================================


class FakeGitHub:
    """In-memory GitHub capability recording calls in order.

    Attributes:
        calls: (operation, args, kwargs) for every call made.
        statuses: Combined states returned by successive get_combined_status
            calls; an Exception item is raised instead. Exhausted means
            "pending".
        mergeable: Successive `mergeable` values; the last one repeats.
        pull_request: Pull request data returned by get_pull_request.
        issue: Issue data returned by get_issue.
        commits: Items returned by list_commits.
        failures: Operation name to exceptions raised by its next calls.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.statuses: list[str | Exception] = []
        self.mergeable: list[bool | None] = [True]
        self.pull_request: dict[str, Any] = {
            "number": 7,
            "title": "Add feature",
            "state": "open",
            "merged": False,
            "labels": [{"name": "ready"}],
            "head": {"ref": "feature-x", "sha": "headsha1234567"},
            "base": {"ref": "main"},
        }
        self.issue: dict[str, Any] = {"number": 7, "state": "closed", "locked": False}
        self.commits: list[dict[str, Any]] = []
        self.failures: dict[str, list[Exception]] = {}

    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))
        pending = self.failures.get(name)
        if pending:
            raise pending.pop(0)

    @property
    def names(self) -> list[str]:
        """Operation names in call order."""
        return [name for name, _, _ in self.calls]

    def called(self, name: str) -> list[tuple[tuple[Any, ...], dict[str, Any]]]:
        """Arguments of every call to one operation."""
        return [(args, kwargs) for n, args, kwargs in self.calls if n == name]

    async def set_issue_state(self, owner: str, repo: str, number: int, state: str) -> dict[str, Any]:
        self._record("set_issue_state", owner, repo, number, state)
        return {"number": number, "state": state}

    async def create_comment(self, owner: str, repo: str, number: int, body: str) -> dict[str, Any]:
        self._record("create_comment", owner, repo, number, body)
        return {"id": 1, "body": body}

    async def delete_comment(self, owner: str, repo: str, comment_id: int) -> None:
        self._record("delete_comment", owner, repo, comment_id)

    async def add_labels(
        self, owner: str, repo: str, number: int, labels: Sequence[str]
    ) -> list[dict[str, Any]]:
        self._record("add_labels", owner, repo, number, tuple(labels))
        return [{"name": label} for label in labels]

    async def remove_label(self, owner: str, repo: str, number: int, label: str) -> None:
        self._record("remove_label", owner, repo, number, label)

    async def lock_conversation(
        self, owner: str, repo: str, number: int, lock_reason: str = "resolved"
    ) -> None:
        self._record("lock_conversation", owner, repo, number, lock_reason)

    async def get_issue(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        self._record("get_issue", owner, repo, number)
        return dict(self.issue)

    async def delete_ref(self, owner: str, repo: str, ref: str) -> None:
        self._record("delete_ref", owner, repo, ref)

    async def create_tag(
        self,
        owner: str,
        repo: str,
        *,
        tag: str,
        message: str,
        object_sha: str,
        object_type: str = "commit",
    ) -> dict[str, Any]:
        self._record(
            "create_tag",
            owner,
            repo,
            tag=tag,
            message=message,
            object_sha=object_sha,
            object_type=object_type,
        )
        return {"sha": "tagobjectsha", "tag": tag}

    async def create_ref(self, owner: str, repo: str, *, ref: str, sha: str) -> dict[str, Any]:
        self._record("create_ref", owner, repo, ref=ref, sha=sha)
        return {"ref": ref, "object": {"sha": sha}}

    async def merge_pull_request(
        self, owner: str, repo: str, number: int, *, sha: str | None = None
    ) -> dict[str, Any]:
        self._record("merge_pull_request", owner, repo, number, sha=sha)
        return {"merged": True}

    async def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        self._record("get_pull_request", owner, repo, number)
        mergeable = self.mergeable[0] if len(self.mergeable) == 1 else self.mergeable.pop(0)
        return {**self.pull_request, "mergeable": mergeable}

    async def get_combined_status(self, owner: str, repo: str, ref: str) -> dict[str, Any]:
        self._record("get_combined_status", owner, repo, ref)
        state = self.statuses.pop(0) if self.statuses else "pending"
        if isinstance(state, Exception):
            raise state
        return {"state": state, "sha": ref}

    async def create_commit_status(
        self,
        owner: str,
        repo: str,
        sha: str,
        *,
        state: str,
        context: str,
        description: str = "",
    ) -> dict[str, Any]:
        self._record(
            "create_commit_status",
            owner,
            repo,
            sha,
            state=state,
            context=context,
            description=description,
        )
        return {"state": state, "context": context}

    async def list_commits(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        self._record("list_commits", owner, repo, number)
        return list(self.commits)


@pytest.fixture
def github() -> FakeGitHub:
    """Return a fresh in-memory GitHub client."""
    return FakeGitHub()


# ============================================================================
# Time Fixtures
# ============================================================================


@pytest.fixture
def clock() -> ManualClock:
    """Return a virtual clock that only moves when advanced."""
    return ManualClock()


@pytest.fixture
def auto_clock() -> ManualClock:
    """Return a virtual clock whose sleeps complete immediately."""
    return ManualClock(auto_advance=True)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory (cleaned up after test)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config() -> dict[str, Any]:
    """Return a rule file exercising every section."""
    return {
        "labels": {
            "wontfix": "close",
            "Duplicate": {
                "action": "close",
                "delay": "7d",
                "comment": "Closing in $DELAY because of `$LABEL`.",
            },
            "reopen": "open",
            "thanks": {"action": "comment", "message": "Thanks for the $LABEL!"},
            "automerge": "merge",
            "do-not-merge": "block_merge",
        },
        "default": {
            "close": {"delay": "3 days", "comment": "This will be closed in $DELAY."},
        },
        "merges": [
            {"action": "delete_branch", "unless": {"branches": ["main", "release/*"]}},
            {"action": "tag"},
        ],
        "comments": [
            {"action": "label", "pattern": "/\\/remind/i", "labels": ["reminder"]},
            {"action": "delete_comment", "pattern": "+1"},
        ],
        "commits": [
            {
                "action": "label",
                "pattern": "BREAKING CHANGE",
                "labels": ["breaking"],
            },
            {
                "action": "label",
                "pattern": "/^docs:/i",
                "user": "octocat",
                "labels": ["documentation"],
            },
        ],
        "closes": [{"action": "lock", "delay": "1d"}],
    }


@pytest.fixture
def make_ruleset() -> Callable[[dict[str, Any]], RuleSet]:
    """Factory fixture compiling a config mapping into a RuleSet."""

    def _make(config: dict[str, Any]) -> RuleSet:
        return RuleSet.from_config(parse_config(config))

    return _make


@pytest.fixture
def sample_ruleset(
    sample_config: dict[str, Any],
    make_ruleset: Callable[[dict[str, Any]], RuleSet],
) -> RuleSet:
    """Return the compiled sample rule file."""
    return make_ruleset(sample_config)


@pytest.fixture
def write_config(temp_dir: Path) -> Callable[..., Path]:
    """Factory fixture to write rule files.

    Args:
        config: Configuration dictionary
        filename: Name of the rule file (default: standard.yaml)

    Returns:
        Path to the written rule file
    """

    def _write(config: dict[str, Any], filename: str = "standard.yaml") -> Path:
        path = temp_dir / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            yaml.safe_dump(config, f)
        return path

    return _write


# ============================================================================
# Event Fixtures
# ============================================================================


def make_event(kind: EventKind, **overrides: Any) -> Event:
    """Build an event on octocat/hello-world#7 with sensible defaults."""
    values: dict[str, Any] = {
        "id": "delivery-1",
        "kind": kind,
        "owner": "octocat",
        "repo": "hello-world",
        "target_number": 7,
        "target_kind": TargetKind.ISSUE,
    }
    values.update(overrides)
    return Event(**values)


@pytest.fixture
def label_event() -> Callable[..., Event]:
    """Factory fixture for label_added events."""

    def _make(label: str, **overrides: Any) -> Event:
        return make_event(EventKind.LABEL_ADDED, label=label, **overrides)

    return _make


@pytest.fixture
def merged_pr_event() -> Event:
    """Return a pull_request_closed event for a merged PR."""
    return make_event(
        EventKind.PULL_REQUEST_CLOSED,
        target_kind=TargetKind.PULL_REQUEST,
        state="closed",
        pull_request=PullRequestInfo(
            title="Add feature",
            merged=True,
            head_ref="feature-x",
            base_ref="main",
            head_sha="headsha1234567",
            merge_commit_sha="mergesha7654321",
        ),
    )


@pytest.fixture
def comment_event() -> Callable[[str], Event]:
    """Factory fixture for comment_created events."""

    def _make(body: str, comment_id: int = 555) -> Event:
        return make_event(
            EventKind.COMMENT_CREATED,
            comment=CommentInfo(id=comment_id, body=body),
        )

    return _make
