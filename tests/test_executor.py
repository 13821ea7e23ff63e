"""Tests for the action executor."""

import pytest

from standardbot.actions.executor import ActionExecutor, ActionStatus, matches_any
from standardbot.github.errors import GitHubAPIError, TransientError
from standardbot.github.events import TargetKind
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

TARGET = {"owner": "octocat", "repo": "hello-world", "target_number": 7}
PR_TARGET = {**TARGET, "target_kind": TargetKind.PULL_REQUEST}


@pytest.fixture
def executor(github, auto_clock):
    return ActionExecutor(github, clock=auto_clock)


class TestMatchesAny:
    def test_globs(self):
        assert matches_any("release/2.0", ["main", "release/*"])
        assert matches_any("main", ["main"])
        assert not matches_any("feature/x", ["main", "release/*"])
        assert not matches_any("Main", ["main"])


class TestIssueActions:
    @pytest.mark.asyncio
    async def test_close_comments_first(self, executor, github):
        result = await executor.execute(
            CloseRequest(**TARGET, comment_text="Closing in 7d", trigger="label:stale")
        )

        assert result.is_success
        assert result.message == "closed with comment"
        assert result.target == "octocat/hello-world#7"
        assert result.details["trigger"] == "label:stale"
        assert github.names == ["create_comment", "set_issue_state"]
        assert github.called("set_issue_state")[0][0] == ("octocat", "hello-world", 7, "closed")

    @pytest.mark.asyncio
    async def test_close_without_comment(self, executor, github):
        result = await executor.execute(CloseRequest(**TARGET))
        assert result.message == "closed"
        assert github.names == ["set_issue_state"]

    @pytest.mark.asyncio
    async def test_open(self, executor, github):
        result = await executor.execute(OpenRequest(**TARGET))
        assert result.is_success
        assert github.called("set_issue_state")[0][0][3] == "open"

    @pytest.mark.asyncio
    async def test_empty_comment_skipped(self, executor, github):
        result = await executor.execute(CommentRequest(**TARGET, message_text="  "))
        assert result.status == ActionStatus.SKIPPED
        assert github.calls == []

    @pytest.mark.asyncio
    async def test_label(self, executor, github):
        result = await executor.execute(LabelRequest(**TARGET, labels=("bug", "triage")))
        assert result.message == "labeled bug, triage"
        assert github.called("add_labels")[0][0][3] == ("bug", "triage")

    @pytest.mark.asyncio
    async def test_delete_comment(self, executor, github):
        result = await executor.execute(DeleteCommentRequest(**TARGET, comment_id=555))
        assert result.message == "deleted comment 555"
        assert github.called("delete_comment")[0][0] == ("octocat", "hello-world", 555)

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failure(self, executor, github):
        github.failures["set_issue_state"] = [RuntimeError("socket on fire")]
        result = await executor.execute(OpenRequest(**TARGET))
        assert result.is_failure
        assert result.message == "socket on fire"

    @pytest.mark.asyncio
    async def test_dry_run(self, github, auto_clock):
        executor = ActionExecutor(github, clock=auto_clock, dry_run=True)
        result = await executor.execute(CloseRequest(**TARGET, comment_text="bye"))
        assert result.status == ActionStatus.DRY_RUN
        assert result.details["request"]["kind"] == "close"
        assert github.calls == []


class TestLock:
    @pytest.mark.asyncio
    async def test_lock(self, executor, github):
        result = await executor.execute(LockRequest(**TARGET, comment_text="Locked."))
        assert result.message == "locked (resolved)"
        assert github.names == ["get_issue", "lock_conversation", "create_comment"]

    @pytest.mark.asyncio
    async def test_reopened_target_not_locked(self, executor, github):
        github.issue = {"state": "open", "locked": False}
        result = await executor.execute(LockRequest(**TARGET))
        assert result.status == ActionStatus.SKIPPED
        assert not github.called("lock_conversation")

    @pytest.mark.asyncio
    async def test_already_locked(self, executor, github):
        github.issue = {"state": "closed", "locked": True}
        result = await executor.execute(LockRequest(**TARGET))
        assert result.status == ActionStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_retries_once_after_a_minute(self, executor, github, auto_clock):
        github.failures["lock_conversation"] = [TransientError("502")]
        result = await executor.execute(LockRequest(**TARGET))
        assert result.is_success
        assert len(github.called("lock_conversation")) == 2
        assert auto_clock.sleeps == [60]

    @pytest.mark.asyncio
    async def test_second_failure_reported(self, executor, github):
        github.failures["lock_conversation"] = [TransientError("502"), TransientError("503")]
        result = await executor.execute(LockRequest(**TARGET))
        assert result.is_failure
        assert len(github.called("lock_conversation")) == 2


class TestMerge:
    @pytest.mark.asyncio
    async def test_merges_when_ready(self, executor, github):
        github.statuses = ["success"]
        result = await executor.execute(MergeRequest(**PR_TARGET, trigger_label="automerge"))

        assert result.is_success
        assert github.names == [
            "get_pull_request",
            "get_combined_status",
            "get_pull_request",
            "merge_pull_request",
            "remove_label",
        ]
        assert github.called("merge_pull_request")[0][1] == {"sha": "headsha1234567"}

    @pytest.mark.asyncio
    async def test_label_removal_failure_keeps_success(self, executor, github):
        github.statuses = ["success"]
        github.failures["remove_label"] = [GitHubAPIError("gone", status_code=404)]
        result = await executor.execute(MergeRequest(**PR_TARGET, trigger_label="automerge"))
        assert result.is_success

    @pytest.mark.asyncio
    async def test_not_a_pull_request(self, executor, github):
        result = await executor.execute(MergeRequest(**TARGET))
        assert result.status == ActionStatus.SKIPPED
        assert github.calls == []

    @pytest.mark.asyncio
    async def test_work_in_progress_blocks_once(self, executor, github):
        github.pull_request["title"] = "WIP: Add feature"
        request = MergeRequest(**PR_TARGET)

        first = await executor.execute(request)
        second = await executor.execute(request)

        assert first.status == second.status == ActionStatus.SKIPPED
        statuses = github.called("create_commit_status")
        assert len(statuses) == 1
        assert statuses[0][1]["state"] == "failure"
        assert statuses[0][1]["description"] == "Work in progress"
        assert not github.called("merge_pull_request")
        assert not github.called("get_combined_status")

    @pytest.mark.asyncio
    async def test_work_in_progress_memory_is_bounded(self, github, auto_clock, monkeypatch):
        monkeypatch.setattr(ActionExecutor, "WIP_MEMORY", 2)
        executor = ActionExecutor(github, clock=auto_clock)
        github.pull_request["title"] = "WIP: Add feature"
        request = MergeRequest(**PR_TARGET)

        for sha in ("sha1", "sha2", "sha3", "sha1"):
            github.pull_request["head"] = {"ref": "feature-x", "sha": sha}
            await executor.execute(request)

        # sha1 was evicted by sha3 and is blocked again
        shas = [call[0][2] for call in github.called("create_commit_status")]
        assert shas == ["sha1", "sha2", "sha3", "sha1"]

    @pytest.mark.asyncio
    async def test_protected_base(self, executor, github):
        result = await executor.execute(MergeRequest(**PR_TARGET, protected_branches=("main",)))
        assert result.status == ActionStatus.SKIPPED
        assert "protected" in result.message
        assert not github.called("merge_pull_request")

    @pytest.mark.asyncio
    async def test_blocking_label(self, executor, github):
        github.pull_request["labels"] = [{"name": "Do-Not-Merge"}]
        result = await executor.execute(
            MergeRequest(**PR_TARGET, blocking_labels=("do-not-merge",))
        )
        assert result.status == ActionStatus.SKIPPED
        assert "Do-Not-Merge" in result.message

    @pytest.mark.asyncio
    async def test_failed_checks(self, executor, github):
        github.statuses = ["pending", "failure"]
        result = await executor.execute(MergeRequest(**PR_TARGET))
        assert result.is_failure
        assert result.details["reason"] == "GateFailure"
        assert not github.called("merge_pull_request")

    @pytest.mark.asyncio
    async def test_checks_never_finish(self, executor, github, auto_clock):
        result = await executor.execute(MergeRequest(**PR_TARGET))
        assert result.is_failure
        assert result.details["reason"] == "GateTimeout"
        assert result.details["attempts"] == 30
        assert len(github.called("get_combined_status")) == 30
        assert not github.called("merge_pull_request")

    @pytest.mark.asyncio
    async def test_already_merged(self, executor, github):
        github.pull_request["merged"] = True
        result = await executor.execute(MergeRequest(**PR_TARGET))
        assert result.status == ActionStatus.SKIPPED


class TestBlockMerge:
    @pytest.mark.asyncio
    async def test_with_known_sha(self, executor, github):
        result = await executor.execute(
            BlockMergeRequest(**PR_TARGET, head_sha="abcdef0123", description="Blocked")
        )
        assert result.message == "blocked merge at abcdef0"
        ((args, kwargs),) = github.called("create_commit_status")
        assert args[2] == "abcdef0123"
        assert kwargs["context"] == ActionExecutor.STATUS_CONTEXT

    @pytest.mark.asyncio
    async def test_fetches_head_sha(self, executor, github):
        await executor.execute(BlockMergeRequest(**PR_TARGET))
        assert github.names == ["get_pull_request", "create_commit_status"]


class TestDeleteBranch:
    @pytest.mark.asyncio
    async def test_deletes_head(self, executor, github):
        result = await executor.execute(
            DeleteBranchRequest(**PR_TARGET, head_ref="feature-x", base_ref="main")
        )
        assert result.message == "deleted branch feature-x"
        assert github.called("delete_ref")[0][0] == ("octocat", "hello-world", "heads/feature-x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("head", "base"),
        [("release/2.0", "main"), ("main", "main"), (None, "main")],
    )
    async def test_protected(self, executor, github, head, base):
        result = await executor.execute(
            DeleteBranchRequest(
                **PR_TARGET,
                head_ref=head,
                base_ref=base,
                protected_branches=("release/*",),
            )
        )
        assert result.status == ActionStatus.SKIPPED
        assert not github.called("delete_ref")


class TestTag:
    @pytest.mark.asyncio
    async def test_tags_merge_commit(self, executor, github):
        result = await executor.execute(TagRequest(**PR_TARGET, merge_commit_sha="mergesha"))

        assert result.message == "tagged v2026.1.10-7"
        ((_, tag_kwargs),) = github.called("create_tag")
        assert tag_kwargs["tag"] == "v2026.1.10-7"
        assert tag_kwargs["object_sha"] == "mergesha"
        assert tag_kwargs["message"] == "Merged PR #7"
        ((_, ref_kwargs),) = github.called("create_ref")
        assert ref_kwargs == {"ref": "refs/tags/v2026.1.10-7", "sha": "tagobjectsha"}

    @pytest.mark.asyncio
    async def test_existing_tag_is_terminal(self, executor, github):
        github.failures["create_tag"] = [
            GitHubAPIError(
                "GitHub API error: 422",
                status_code=422,
                response_body={"message": "Reference already exists"},
            )
        ]
        result = await executor.execute(TagRequest(**PR_TARGET, merge_commit_sha="mergesha"))
        assert result.is_failure
        assert result.action == ActionKind.TAG
        assert not github.called("create_ref")

    @pytest.mark.asyncio
    async def test_missing_merge_commit(self, executor, github):
        result = await executor.execute(TagRequest(**PR_TARGET))
        assert result.status == ActionStatus.SKIPPED
        assert github.calls == []
