"""Rule and action request models.

Rules are compiled once from the configuration. Resolving an event against
them yields action requests: one pydantic model per action kind, joined in a
discriminated union on `kind`, each carrying only what its action needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from standardbot.config.durations import Duration
from standardbot.github.events import Event, TargetKind
from standardbot.rules.patterns import CompiledPattern


class ActionKind(str, Enum):
    """Action a rule can perform."""

    CLOSE = "close"
    OPEN = "open"
    COMMENT = "comment"
    MERGE = "merge"
    LOCK = "lock"
    DELETE_BRANCH = "delete_branch"
    TAG = "tag"
    LABEL = "label"
    DELETE_COMMENT = "delete_comment"
    BLOCK_MERGE = "block_merge"


@dataclass(frozen=True)
class Default:
    """Per-action fallback for delay and comment.

    Attributes:
        delay: Delay used when a rule has none.
        comment: Comment template used when a rule has none; False suppresses.
    """

    delay: Duration | None = None
    comment: str | Literal[False] | None = None


@dataclass(frozen=True)
class Rule:
    """A compiled rule.

    Attributes:
        action: What the rule does.
        section: Config section it came from (labels, comments, ...).
        name: Label name for label rules, "<section>[index]" otherwise.
        delay: Own delay, None to inherit the default.
        comment: Own comment template, False to suppress, None to inherit.
        message: Message template for `comment` actions.
        labels: Labels to apply for `label` actions.
        pattern: Compiled pattern for comment and commit rules.
        user: Commit author/committer filter.
        branches: Protected branch globs (`unless.branches`).
    """

    action: ActionKind
    section: str
    name: str
    delay: Duration | None = None
    comment: str | Literal[False] | None = None
    message: str | None = None
    labels: tuple[str, ...] = ()
    pattern: CompiledPattern | None = None
    user: str | None = None
    branches: tuple[str, ...] = ()


# =============================================================================
# Action requests
# =============================================================================


class BaseActionRequest(BaseModel):
    """Fields shared by every resolved action request."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., description="Repository owner")
    repo: str = Field(..., description="Repository name")
    target_number: int = Field(..., description="Issue or pull request number")
    target_kind: TargetKind = Field(default=TargetKind.ISSUE)
    delay_ms: int = Field(default=0, ge=0, description="Delay before execution")
    trigger: str = Field(default="", description="What produced this request")

    @property
    def target_id(self) -> str:
        """Target identifier in the form owner/repo#number."""
        return f"{self.owner}/{self.repo}#{self.target_number}"

    @property
    def key(self) -> tuple[str, str, int, str]:
        """Scheduling key: at most one pending task per key."""
        return (self.owner, self.repo, self.target_number, self._key_action())

    def _key_action(self) -> str:
        return self.kind.value  # type: ignore[attr-defined]


class CloseRequest(BaseActionRequest):
    """Comment (unless suppressed), then close."""

    kind: Literal[ActionKind.CLOSE] = ActionKind.CLOSE
    comment_text: str | None = None


class OpenRequest(BaseActionRequest):
    """Reopen the target."""

    kind: Literal[ActionKind.OPEN] = ActionKind.OPEN


class CommentRequest(BaseActionRequest):
    """Post a plain comment."""

    kind: Literal[ActionKind.COMMENT] = ActionKind.COMMENT
    message_text: str = ""


class MergeRequest(BaseActionRequest):
    """Merge a pull request once checks pass."""

    kind: Literal[ActionKind.MERGE] = ActionKind.MERGE
    trigger_label: str | None = None
    protected_branches: tuple[str, ...] = ()
    blocking_labels: tuple[str, ...] = ()


class LockRequest(BaseActionRequest):
    """Lock the conversation of a closed target."""

    kind: Literal[ActionKind.LOCK] = ActionKind.LOCK
    comment_text: str | None = None
    lock_reason: str = "resolved"


class DeleteBranchRequest(BaseActionRequest):
    """Delete the head branch of a merged pull request."""

    kind: Literal[ActionKind.DELETE_BRANCH] = ActionKind.DELETE_BRANCH
    head_ref: str | None = None
    base_ref: str | None = None
    protected_branches: tuple[str, ...] = ()


class TagRequest(BaseActionRequest):
    """Tag the merge commit of a merged pull request."""

    kind: Literal[ActionKind.TAG] = ActionKind.TAG
    merge_commit_sha: str | None = None


class LabelRequest(BaseActionRequest):
    """Apply labels."""

    kind: Literal[ActionKind.LABEL] = ActionKind.LABEL
    labels: tuple[str, ...] = ()

    def _key_action(self) -> str:
        # Different label sets are independent work
        return f"{self.kind.value}:{','.join(sorted(self.labels))}"


class DeleteCommentRequest(BaseActionRequest):
    """Delete the comment that triggered the rule."""

    kind: Literal[ActionKind.DELETE_COMMENT] = ActionKind.DELETE_COMMENT
    comment_id: int | None = None

    def _key_action(self) -> str:
        return f"{self.kind.value}:{self.comment_id}"


class BlockMergeRequest(BaseActionRequest):
    """Post a failing commit status so the pull request cannot be merged."""

    kind: Literal[ActionKind.BLOCK_MERGE] = ActionKind.BLOCK_MERGE
    head_sha: str | None = None
    description: str = "Merging is blocked"
    comment_text: str | None = None


ActionRequest = Annotated[
    CloseRequest
    | OpenRequest
    | CommentRequest
    | MergeRequest
    | LockRequest
    | DeleteBranchRequest
    | TagRequest
    | LabelRequest
    | DeleteCommentRequest
    | BlockMergeRequest,
    Field(discriminator="kind"),
]


class Resolution(BaseModel):
    """All action requests resolved for one event."""

    model_config = ConfigDict(frozen=True)

    event: Event = Field(..., description="The event being resolved")
    requests: list[ActionRequest] = Field(default_factory=list)
    rules_evaluated: int = Field(default=0, description="Rules considered")
    rules_failed: int = Field(default=0, description="Rules that raised during resolution")

    @property
    def has_requests(self) -> bool:
        """Check if any action was resolved."""
        return len(self.requests) > 0

    @property
    def actions(self) -> list[str]:
        """Action kinds of the resolved requests, in order."""
        return [r.kind.value for r in self.requests]
