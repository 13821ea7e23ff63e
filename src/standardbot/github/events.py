"""Normalized event models.

Events arrive already normalized by the webhook layer: one record per
occurrence with the target identified and the kind-specific payload
extracted. The core only reads them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    """Kinds of repository activity that rules react to."""

    LABEL_ADDED = "label_added"
    COMMENT_CREATED = "comment_created"
    COMMIT_PUSHED = "commit_pushed"
    ISSUE_CLOSED = "issue_closed"
    PULL_REQUEST_CLOSED = "pull_request_closed"


class TargetKind(str, Enum):
    """Kind of entity an event targets."""

    ISSUE = "issue"
    PULL_REQUEST = "pull_request"


class CommentInfo(BaseModel):
    """The comment that triggered a comment_created event."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Comment ID")
    body: str = Field(default="", description="Comment text")


class CommitInfo(BaseModel):
    """One commit pushed to a pull request."""

    model_config = ConfigDict(frozen=True)

    sha: str = Field(..., description="Commit SHA")
    message: str = Field(default="", description="Full commit message")
    author_login: str | None = Field(default=None, description="GitHub login of the author")
    committer_login: str | None = Field(
        default=None,
        description="GitHub login of the committer",
    )

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> CommitInfo:
        """Build from an item of the pull request commits API.

        Args:
            data: Commit object as returned by GET /pulls/{n}/commits.

        Returns:
            CommitInfo instance.
        """
        author = data.get("author") or {}
        committer = data.get("committer") or {}
        return cls(
            sha=data.get("sha", ""),
            message=(data.get("commit") or {}).get("message", ""),
            author_login=author.get("login"),
            committer_login=committer.get("login"),
        )


class PullRequestInfo(BaseModel):
    """Pull request metadata carried by pull request events."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(default="", description="Pull request title")
    merged: bool = Field(default=False, description="Whether the PR was merged")
    head_ref: str | None = Field(default=None, description="Head branch name")
    base_ref: str | None = Field(default=None, description="Base branch name")
    head_sha: str | None = Field(default=None, description="Head commit SHA")
    merge_commit_sha: str | None = Field(default=None, description="Merge commit SHA")
    labels: list[str] = Field(default_factory=list, description="Labels on the PR")

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> PullRequestInfo:
        """Build from a pull request object of the REST API.

        Args:
            data: Pull request object as returned by GET /pulls/{n}.

        Returns:
            PullRequestInfo instance.
        """
        head = data.get("head") or {}
        base = data.get("base") or {}
        return cls(
            title=data.get("title") or "",
            merged=bool(data.get("merged")),
            head_ref=head.get("ref"),
            base_ref=base.get("ref"),
            head_sha=head.get("sha"),
            merge_commit_sha=data.get("merge_commit_sha"),
            labels=[
                label["name"] if isinstance(label, dict) else str(label)
                for label in data.get("labels") or []
            ],
        )


class Event(BaseModel):
    """Normalized repository event for rule resolution."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default="", description="Delivery ID, if known")
    kind: EventKind = Field(..., description="Type of event")

    owner: str = Field(..., description="Repository owner")
    repo: str = Field(..., description="Repository name")
    target_number: int = Field(..., description="Issue or pull request number")
    target_kind: TargetKind = Field(default=TargetKind.ISSUE)

    label: str | None = Field(default=None, description="Label just added")
    labels: list[str] = Field(default_factory=list, description="Labels on the target")
    comment: CommentInfo | None = Field(default=None)
    commits: list[CommitInfo] = Field(default_factory=list)
    pull_request: PullRequestInfo | None = Field(default=None)
    state: str | None = Field(default=None, description="Target state, e.g. 'closed'")

    @property
    def repo_full_name(self) -> str:
        """Full repository name (owner/repo)."""
        return f"{self.owner}/{self.repo}"

    @property
    def target_id(self) -> str:
        """Target identifier in the form owner/repo#number."""
        return f"{self.repo_full_name}#{self.target_number}"

    @property
    def is_pull_request(self) -> bool:
        """Whether the event targets a pull request."""
        return self.target_kind == TargetKind.PULL_REQUEST

    @property
    def is_terminal(self) -> bool:
        """Whether the target reached a closed or merged state."""
        if self.state == "closed":
            return True
        return self.pull_request is not None and self.pull_request.merged
