"""Action executor for resolved action requests.

This module provides the ActionExecutor class which:
- Dispatches each request kind to its handler through a table keyed by
  ActionKind
- Checks per-action preconditions (protected branches, WIP marker,
  blocking labels, closed state) before touching GitHub
- Performs multi-step actions in order (comment before close, tag object
  before tag ref, readiness gate before merge)
- Isolates failures: execute() never raises, it returns an ActionResult
"""

from __future__ import annotations

import fnmatch
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from standardbot.actions.merge_gate import MergeAborted, MergeReadinessGate
from standardbot.clock import Clock, SystemClock
from standardbot.github.errors import ExternalCallError, GitHubAPIError
from standardbot.github.events import TargetKind
from standardbot.rules.resolver import is_work_in_progress
from standardbot.rules.schema import (
    ActionKind,
    BlockMergeRequest,
    CloseRequest,
    CommentRequest,
    DeleteBranchRequest,
    DeleteCommentRequest,
    LabelRequest,
    LockRequest,
    MergeRequest,
    OpenRequest,
    TagRequest,
)

if TYPE_CHECKING:
    from standardbot.github.client import GitHubCapability
    from standardbot.rules.schema import ActionRequest, BaseActionRequest

logger = logging.getLogger(__name__)


class ActionStatus(str, Enum):
    """Status of an action execution."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"


class ActionResult(BaseModel):
    """Result of an action execution."""

    model_config = ConfigDict(frozen=True)

    action: ActionKind = Field(..., description="Kind of action")
    target: str = Field(..., description="owner/repo#number")
    status: ActionStatus = Field(..., description="Execution status")
    message: str = Field(default="", description="Status message or error")
    executed_at: datetime = Field(..., description="When the action finished")
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional action-specific details",
    )

    @property
    def is_success(self) -> bool:
        """Check if action succeeded."""
        return self.status == ActionStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        """Check if action failed."""
        return self.status == ActionStatus.FAILURE


class PreconditionSkip(Exception):
    """Raised by a handler when the action must not be performed."""


def matches_any(name: str, patterns: Iterable[str]) -> bool:
    """Check a branch name against glob patterns (e.g. `release/*`)."""
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


def _label_names(data: dict[str, Any]) -> list[str]:
    return [
        label["name"] if isinstance(label, dict) else str(label)
        for label in data.get("labels") or []
    ]


class ActionExecutor:
    """Performs resolved action requests against GitHub.

    Only `lock` retries on its own: once, LOCK_RETRY_SECONDS after a failed
    attempt. Every other failure is reported in the result.
    """

    LOCK_RETRY_SECONDS = 60
    STATUS_CONTEXT = "standard-bot"
    # Head commits remembered as already carrying the WIP status
    WIP_MEMORY = 1024

    def __init__(
        self,
        client: GitHubCapability,
        *,
        gate: MergeReadinessGate | None = None,
        clock: Clock | None = None,
        dry_run: bool = False,
    ) -> None:
        """Initialize action executor.

        Args:
            client: GitHub client capability.
            gate: Merge readiness gate; built from client and clock if omitted.
            clock: Clock for timestamps, tag names and the lock retry.
            dry_run: If True, log actions without executing.
        """
        self._client = client
        self._clock = clock or SystemClock()
        self._gate = gate or MergeReadinessGate(client, self._clock)
        self._dry_run = dry_run
        self._wip_blocked: OrderedDict[tuple[str, str, str], None] = OrderedDict()
        self._handlers: dict[ActionKind, Callable[[Any], Awaitable[str]]] = {
            ActionKind.CLOSE: self._close,
            ActionKind.OPEN: self._open,
            ActionKind.COMMENT: self._comment,
            ActionKind.LOCK: self._lock,
            ActionKind.MERGE: self._merge,
            ActionKind.DELETE_BRANCH: self._delete_branch,
            ActionKind.TAG: self._tag,
            ActionKind.LABEL: self._label,
            ActionKind.DELETE_COMMENT: self._delete_comment,
            ActionKind.BLOCK_MERGE: self._block_merge,
        }

    @property
    def dry_run(self) -> bool:
        """Whether actions are only logged."""
        return self._dry_run

    def _result(
        self,
        request: BaseActionRequest,
        status: ActionStatus,
        message: str,
        /,
        **details: Any,
    ) -> ActionResult:
        return ActionResult(
            action=request.kind,  # type: ignore[attr-defined]
            target=request.target_id,
            status=status,
            message=message,
            executed_at=self._clock.now(),
            details={"trigger": request.trigger, **details},
        )

    async def execute(self, request: ActionRequest) -> ActionResult:
        """Execute a single action request.

        Args:
            request: Resolved action request.

        Returns:
            ActionResult with execution status. Never raises.
        """
        kind = request.kind

        if self._dry_run:
            logger.info(
                "[DRY RUN] Would execute %s on %s (%s)",
                kind.value,
                request.target_id,
                request.trigger,
            )
            return self._result(
                request,
                ActionStatus.DRY_RUN,
                f"Dry run: {kind.value} would be executed",
                request=request.model_dump(mode="json"),
            )

        handler = self._handlers.get(kind)
        if handler is None:
            return self._result(request, ActionStatus.SKIPPED, f"Unknown action: {kind}")

        try:
            message = await handler(request)
        except PreconditionSkip as e:
            logger.info("Skipped %s on %s: %s", kind.value, request.target_id, e)
            return self._result(request, ActionStatus.SKIPPED, str(e))
        except MergeAborted as e:
            logger.warning("Merge of %s aborted: %s", request.target_id, e)
            return self._result(
                request,
                ActionStatus.FAILURE,
                str(e),
                reason=type(e).__name__,
                attempts=e.attempts,
            )
        except ExternalCallError as e:
            if isinstance(e, GitHubAPIError) and e.already_exists:
                logger.error(
                    "%s on %s failed, object already exists: %s",
                    kind.value,
                    request.target_id,
                    e,
                )
            else:
                logger.error("%s on %s failed: %s", kind.value, request.target_id, e)
            return self._result(request, ActionStatus.FAILURE, str(e))
        except Exception as e:
            logger.exception("Error executing %s on %s", kind.value, request.target_id)
            return self._result(request, ActionStatus.FAILURE, str(e))

        logger.info("Executed %s on %s: %s", kind.value, request.target_id, message)
        return self._result(request, ActionStatus.SUCCESS, message)

    # =========================================================================
    # Issue state and comments
    # =========================================================================

    async def _close(self, request: CloseRequest) -> str:
        if request.comment_text:
            await self._client.create_comment(
                request.owner, request.repo, request.target_number, request.comment_text
            )
        await self._client.set_issue_state(
            request.owner, request.repo, request.target_number, "closed"
        )
        return "closed" + (" with comment" if request.comment_text else "")

    async def _open(self, request: OpenRequest) -> str:
        await self._client.set_issue_state(
            request.owner, request.repo, request.target_number, "open"
        )
        return "opened"

    async def _comment(self, request: CommentRequest) -> str:
        if not request.message_text.strip():
            raise PreconditionSkip("comment message is empty")
        await self._client.create_comment(
            request.owner, request.repo, request.target_number, request.message_text
        )
        return "commented"

    async def _label(self, request: LabelRequest) -> str:
        if not request.labels:
            raise PreconditionSkip("no labels to apply")
        await self._client.add_labels(
            request.owner, request.repo, request.target_number, request.labels
        )
        return f"labeled {', '.join(request.labels)}"

    async def _delete_comment(self, request: DeleteCommentRequest) -> str:
        if request.comment_id is None:
            raise PreconditionSkip("comment id is unknown")
        await self._client.delete_comment(request.owner, request.repo, request.comment_id)
        return f"deleted comment {request.comment_id}"

    async def _lock(self, request: LockRequest) -> str:
        issue = await self._client.get_issue(request.owner, request.repo, request.target_number)
        if issue.get("state") != "closed":
            raise PreconditionSkip("target is no longer closed")
        if issue.get("locked"):
            raise PreconditionSkip("conversation is already locked")

        try:
            await self._client.lock_conversation(
                request.owner, request.repo, request.target_number, request.lock_reason
            )
        except ExternalCallError as e:
            logger.warning(
                "Lock of %s failed (%s); retrying once in %ds",
                request.target_id,
                e,
                self.LOCK_RETRY_SECONDS,
            )
            await self._clock.sleep(self.LOCK_RETRY_SECONDS)
            await self._client.lock_conversation(
                request.owner, request.repo, request.target_number, request.lock_reason
            )

        if request.comment_text:
            await self._client.create_comment(
                request.owner, request.repo, request.target_number, request.comment_text
            )
        return f"locked ({request.lock_reason})"

    # =========================================================================
    # Pull requests
    # =========================================================================

    async def _merge(self, request: MergeRequest) -> str:
        if request.target_kind != TargetKind.PULL_REQUEST:
            raise PreconditionSkip("target is not a pull request")

        owner, repo, number = request.owner, request.repo, request.target_number
        pull = await self._client.get_pull_request(owner, repo, number)
        if pull.get("merged"):
            raise PreconditionSkip("pull request is already merged")
        if pull.get("state") == "closed":
            raise PreconditionSkip("pull request is closed")

        base_ref = (pull.get("base") or {}).get("ref")
        head_sha = (pull.get("head") or {}).get("sha")
        if base_ref and matches_any(base_ref, request.protected_branches):
            raise PreconditionSkip(f"base branch '{base_ref}' is protected")

        labels = _label_names(pull)
        if is_work_in_progress(pull.get("title"), labels):
            if head_sha:
                await self._block_work_in_progress(owner, repo, head_sha)
            raise PreconditionSkip("pull request is marked work in progress")

        blocking = {name.lower() for name in request.blocking_labels}
        present = [label for label in labels if label.lower() in blocking]
        if present:
            raise PreconditionSkip(f"blocked by label(s): {', '.join(present)}")

        if not head_sha:
            raise PreconditionSkip("head commit is unknown")

        await self._gate.ensure_ready(owner, repo, number, head_sha)
        await self._client.merge_pull_request(owner, repo, number, sha=head_sha)

        if request.trigger_label:
            try:
                await self._client.remove_label(owner, repo, number, request.trigger_label)
            except ExternalCallError as e:
                logger.warning(
                    "Merged %s but could not remove label '%s': %s",
                    request.target_id,
                    request.trigger_label,
                    e,
                )
        return "merged"

    async def _block_work_in_progress(self, owner: str, repo: str, sha: str) -> None:
        """Post the failing WIP status once per head commit."""
        key = (owner, repo, sha)
        if key in self._wip_blocked:
            self._wip_blocked.move_to_end(key)
            return
        await self._client.create_commit_status(
            owner,
            repo,
            sha,
            state="failure",
            context=self.STATUS_CONTEXT,
            description="Work in progress",
        )
        self._wip_blocked[key] = None
        if len(self._wip_blocked) > self.WIP_MEMORY:
            self._wip_blocked.popitem(last=False)

    async def _block_merge(self, request: BlockMergeRequest) -> str:
        if request.target_kind != TargetKind.PULL_REQUEST:
            raise PreconditionSkip("target is not a pull request")

        sha = request.head_sha
        if not sha:
            pull = await self._client.get_pull_request(
                request.owner, request.repo, request.target_number
            )
            sha = (pull.get("head") or {}).get("sha")
        if not sha:
            raise PreconditionSkip("head commit is unknown")

        await self._client.create_commit_status(
            request.owner,
            request.repo,
            sha,
            state="failure",
            context=self.STATUS_CONTEXT,
            description=request.description[:140],
        )
        if request.comment_text:
            await self._client.create_comment(
                request.owner, request.repo, request.target_number, request.comment_text
            )
        return f"blocked merge at {sha[:7]}"

    async def _delete_branch(self, request: DeleteBranchRequest) -> str:
        head, base = request.head_ref, request.base_ref
        if not head:
            raise PreconditionSkip("head branch is unknown")
        if head == base:
            raise PreconditionSkip(f"head branch '{head}' is the base branch")
        if matches_any(head, request.protected_branches):
            raise PreconditionSkip(f"branch '{head}' is protected")

        await self._client.delete_ref(request.owner, request.repo, f"heads/{head}")
        return f"deleted branch {head}"

    async def _tag(self, request: TagRequest) -> str:
        sha = request.merge_commit_sha
        if not sha:
            raise PreconditionSkip("merge commit is unknown")

        today = self._clock.now()
        name = f"v{today.year}.{today.month}.{today.day}-{request.target_number}"

        tag = await self._client.create_tag(
            request.owner,
            request.repo,
            tag=name,
            message=f"Merged PR #{request.target_number}",
            object_sha=sha,
        )
        tag_sha = tag.get("sha")
        if not tag_sha:
            raise GitHubAPIError(f"tag object for {name} was created without a sha")

        await self._client.create_ref(
            request.owner, request.repo, ref=f"refs/tags/{name}", sha=tag_sha
        )
        return f"tagged {name}"
