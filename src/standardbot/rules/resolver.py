"""Rule resolution.

This module provides the RuleResolver class, which turns one Event into the
action requests its matching rules call for. It handles:
- Label rules, with delay and comment inherited from per-action defaults
- Comment and commit pattern rules (every matching rule fires)
- Close rules (lock) and merge rules (delete_branch, tag)
- Template substitution of $DELAY and $LABEL at resolution time

Resolution never raises for a single bad rule: the error is logged and the
remaining rules are still resolved.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from functools import partial

from standardbot.config.durations import Duration
from standardbot.github.events import CommitInfo, Event, EventKind
from standardbot.rules.ruleset import RuleSet
from standardbot.rules.schema import (
    ActionKind,
    ActionRequest,
    BlockMergeRequest,
    CloseRequest,
    CommentRequest,
    DeleteBranchRequest,
    DeleteCommentRequest,
    LabelRequest,
    LockRequest,
    MergeRequest,
    OpenRequest,
    Resolution,
    Rule,
    TagRequest,
)

logger = logging.getLogger(__name__)

TEMPLATE_VAR_PATTERN = re.compile(r"\$(\w+)")

WIP_TITLE_PATTERN = re.compile(r"\bWIP\b", re.IGNORECASE)
WIP_LABEL = "wip"


def render_template(template: str, variables: Mapping[str, str]) -> str:
    """Replace $NAME tokens with their values.

    Unknown tokens resolve to an empty string.

    Args:
        template: Text containing $NAME tokens.
        variables: Token values by name.

    Returns:
        The rendered text.

    Example:
        >>> render_template("Closing in $DELAY ($LABEL)", {"DELAY": "7d", "LABEL": "stale"})
        'Closing in 7d (stale)'
    """
    return TEMPLATE_VAR_PATTERN.sub(lambda m: variables.get(m.group(1), ""), template)


def is_work_in_progress(title: str | None, labels: Iterable[str]) -> bool:
    """Check for a WIP marker in a pull request title or label set."""
    if title and WIP_TITLE_PATTERN.search(title):
        return True
    return any(label.lower() == WIP_LABEL for label in labels)


@dataclass
class _Pass:
    """Accumulates the outcome of one resolve() call."""

    requests: list[ActionRequest] = field(default_factory=list)
    evaluated: int = 0
    failed: int = 0


class RuleResolver:
    """Resolves events against a compiled RuleSet."""

    def __init__(self, ruleset: RuleSet) -> None:
        """Initialize the resolver.

        Args:
            ruleset: Compiled rules.
        """
        self._ruleset = ruleset
        self._handlers: dict[EventKind, Callable[[Event, _Pass], None]] = {
            EventKind.LABEL_ADDED: self._resolve_labels,
            EventKind.COMMENT_CREATED: self._resolve_comment,
            EventKind.COMMIT_PUSHED: self._resolve_commits,
            EventKind.ISSUE_CLOSED: self._resolve_closed,
            EventKind.PULL_REQUEST_CLOSED: self._resolve_pull_request_closed,
        }

    @property
    def ruleset(self) -> RuleSet:
        """The rules this resolver applies."""
        return self._ruleset

    def resolve(self, event: Event) -> Resolution:
        """Resolve an event into action requests.

        Args:
            event: Normalized event.

        Returns:
            Resolution with every request the matching rules produced.
        """
        state = _Pass()
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.debug("No rules apply to event kind '%s'", event.kind.value)
        else:
            handler(event, state)

        return Resolution(
            event=event,
            requests=state.requests,
            rules_evaluated=state.evaluated,
            rules_failed=state.failed,
        )

    def _apply(
        self,
        state: _Pass,
        event: Event,
        rule: Rule,
        build: Callable[[], list[ActionRequest]],
    ) -> None:
        """Run one rule's builder, isolating its failure from the others."""
        state.evaluated += 1
        try:
            produced = build()
        except Exception as e:
            state.failed += 1
            logger.warning(
                "Error resolving rule %s (%s) for %s: %s",
                rule.name,
                rule.action.value,
                event.target_id,
                e,
            )
            return

        for request in produced:
            logger.debug(
                "Rule %s resolved %s for %s (delay %dms)",
                rule.name,
                request.kind.value,
                event.target_id,
                request.delay_ms,
            )
        state.requests.extend(produced)

    # =========================================================================
    # Defaults
    # =========================================================================

    def resolve_delay(self, rule: Rule) -> Duration:
        """Rule delay, else the action's default delay, else zero."""
        if rule.delay is not None:
            return rule.delay
        default = self._ruleset.default_for(rule.action)
        if default.delay is not None:
            return default.delay
        return Duration.zero()

    def resolve_comment(self, rule: Rule) -> str | None:
        """Rule comment, else the action's default comment.

        Returns:
            The comment template, or None when suppressed or unconfigured.
        """
        if rule.comment is False:
            return None
        if rule.comment:
            return rule.comment
        default = self._ruleset.default_for(rule.action).comment
        return default or None

    def _common(self, event: Event, delay: Duration, trigger: str) -> dict[str, object]:
        return {
            "owner": event.owner,
            "repo": event.repo,
            "target_number": event.target_number,
            "target_kind": event.target_kind,
            "delay_ms": delay.ms,
            "trigger": trigger,
        }

    # =========================================================================
    # Labels
    # =========================================================================

    def _resolve_labels(self, event: Event, state: _Pass) -> None:
        labels = [event.label] if event.label else list(event.labels)
        for label in labels:
            rule = self._ruleset.label_rule(label)
            if rule is None:
                logger.debug("No rule for label '%s'", label)
                continue
            self._apply(state, event, rule, partial(self._label_request, event, rule, label))

    def _label_request(self, event: Event, rule: Rule, label: str) -> list[ActionRequest]:
        delay = self.resolve_delay(rule)
        comment = self.resolve_comment(rule)
        variables = {"DELAY": delay.text, "LABEL": label}
        common = self._common(event, delay, trigger=f"label:{label}")
        comment_text = render_template(comment, variables) if comment else None
        pull_request = event.pull_request

        if rule.action == ActionKind.CLOSE:
            return [CloseRequest(**common, comment_text=comment_text)]
        if rule.action == ActionKind.OPEN:
            return [OpenRequest(**common)]
        if rule.action == ActionKind.COMMENT:
            message = render_template(rule.message, variables) if rule.message else ""
            return [CommentRequest(**common, message_text=message)]
        if rule.action == ActionKind.LOCK:
            return [LockRequest(**common, comment_text=comment_text)]
        if rule.action == ActionKind.LABEL:
            return [LabelRequest(**common, labels=rule.labels)]
        if rule.action == ActionKind.MERGE:
            return [
                MergeRequest(
                    **common,
                    trigger_label=label,
                    protected_branches=self._ruleset.protected_branches,
                    blocking_labels=self._ruleset.blocking_labels,
                )
            ]
        if rule.action == ActionKind.BLOCK_MERGE:
            return [
                BlockMergeRequest(
                    **common,
                    head_sha=pull_request.head_sha if pull_request else None,
                    description=f"Merging is blocked by the '{label}' label",
                    comment_text=comment_text,
                )
            ]
        raise ValueError(f"action '{rule.action.value}' cannot be triggered by a label")

    # =========================================================================
    # Comments and commits
    # =========================================================================

    def _resolve_comment(self, event: Event, state: _Pass) -> None:
        if event.comment is None:
            logger.debug("Comment event for %s has no comment payload", event.target_id)
            return

        for rule in self._ruleset.comments:
            if rule.pattern is None or not rule.pattern.matches(event.comment.body):
                continue
            self._apply(state, event, rule, partial(self._comment_request, event, rule))

    def _comment_request(self, event: Event, rule: Rule) -> list[ActionRequest]:
        if event.comment is None:
            raise ValueError("comment event carries no comment")
        common = self._common(
            event, self.resolve_delay(rule), trigger=f"comment:{event.comment.id}"
        )
        if rule.action == ActionKind.LABEL:
            return [LabelRequest(**common, labels=rule.labels)]
        if rule.action == ActionKind.DELETE_COMMENT:
            return [DeleteCommentRequest(**common, comment_id=event.comment.id)]
        raise ValueError(f"action '{rule.action.value}' cannot be triggered by a comment")

    def _resolve_commits(self, event: Event, state: _Pass) -> None:
        produced: list[ActionRequest] = []
        seen: set[tuple[tuple[str, str, int, str], int]] = set()

        sub = _Pass()
        for commit in event.commits:
            for rule in self._ruleset.commits:
                if rule.pattern is None or not rule.pattern.matches(commit.message):
                    continue
                if rule.user and rule.user not in (commit.author_login, commit.committer_login):
                    logger.debug(
                        "Commit %s matches %s but not user '%s'",
                        commit.sha[:7],
                        rule.name,
                        rule.user,
                    )
                    continue
                self._apply(sub, event, rule, partial(self._commit_request, event, rule, commit))

        for request in sub.requests:
            identity = (request.key, request.delay_ms)
            if identity in seen:
                continue
            seen.add(identity)
            produced.append(request)

        state.requests.extend(produced)
        state.evaluated += sub.evaluated
        state.failed += sub.failed

    def _commit_request(self, event: Event, rule: Rule, commit: CommitInfo) -> list[ActionRequest]:
        common = self._common(
            event, self.resolve_delay(rule), trigger=f"commit:{commit.sha[:7]}"
        )
        return [LabelRequest(**common, labels=rule.labels)]

    # =========================================================================
    # Close and merge
    # =========================================================================

    def _resolve_closed(self, event: Event, state: _Pass) -> None:
        if not event.is_terminal:
            logger.debug("%s is not closed; close rules skipped", event.target_id)
            return

        for rule in self._ruleset.closes:
            self._apply(state, event, rule, partial(self._lock_request, event, rule))

    def _lock_request(self, event: Event, rule: Rule) -> list[ActionRequest]:
        delay = self.resolve_delay(rule)
        comment = self.resolve_comment(rule)
        comment_text = (
            render_template(comment, {"DELAY": delay.text, "LABEL": ""}) if comment else None
        )
        return [
            LockRequest(
                **self._common(event, delay, trigger="closed"),
                comment_text=comment_text,
            )
        ]

    def _resolve_pull_request_closed(self, event: Event, state: _Pass) -> None:
        self._resolve_closed(event, state)

        pull_request = event.pull_request
        if pull_request is None or not pull_request.merged:
            return

        if is_work_in_progress(pull_request.title, [*pull_request.labels, *event.labels]):
            logger.info(
                "%s is marked work in progress; merge rules skipped", event.target_id
            )
            if self._ruleset.merges:
                state.requests.append(
                    BlockMergeRequest(
                        **self._common(event, Duration.zero(), trigger="wip"),
                        head_sha=pull_request.head_sha,
                        description="Work in progress",
                    )
                )
            return

        for rule in self._ruleset.merges:
            self._apply(state, event, rule, partial(self._merge_rule_request, event, rule))

    def _merge_rule_request(self, event: Event, rule: Rule) -> list[ActionRequest]:
        pull_request = event.pull_request
        if pull_request is None:
            raise ValueError("merged event carries no pull request")
        common = self._common(event, self.resolve_delay(rule), trigger="merged")

        if rule.action == ActionKind.DELETE_BRANCH:
            return [
                DeleteBranchRequest(
                    **common,
                    head_ref=pull_request.head_ref,
                    base_ref=pull_request.base_ref,
                    protected_branches=(*rule.branches, *self._ruleset.protected_branches),
                )
            ]
        if rule.action == ActionKind.TAG:
            return [TagRequest(**common, merge_commit_sha=pull_request.merge_commit_sha)]
        raise ValueError(f"action '{rule.action.value}' cannot be triggered by a merge")
