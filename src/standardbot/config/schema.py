"""Pydantic schema models for the rule configuration file.

The shape mirrors `.github/standard.yaml` field for field:

    labels:
      wontfix: close                  # shorthand: just the action
      duplicate:
        action: close
        delay: 7d
        comment: "Closing in $DELAY because of `$LABEL`."
    default:
      close:
        delay: 3 days
        comment: "This will be closed in $DELAY."
    merges:
      - action: delete_branch
        unless:
          branches: [main, release/*]
      - action: tag
    comments:
      - action: label
        pattern: /\\/remind/i
        labels: [reminder]
    commits:
      - action: label
        pattern: BREAKING CHANGE
        user: octocat
        labels: [breaking]
    closes:
      - action: lock
        delay: 1d

Models validate structure only. Action keywords and patterns are checked
when the RuleSet is compiled, where a bad rule is skipped instead of
rejecting the whole file.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from standardbot.config.durations import Duration, parse_duration


class UnlessSpec(BaseModel):
    """Exemptions for a merge rule.

    Attributes:
        branches: Glob patterns of branches the rule must never touch.
    """

    model_config = ConfigDict(extra="forbid")

    branches: list[str] = Field(default_factory=list)


class _DelayedSpec(BaseModel):
    """Shared delay/comment handling for rules and defaults."""

    model_config = ConfigDict(extra="forbid")

    delay: str | int | float | None = None
    comment: str | bool | None = None

    @field_validator("delay")
    @classmethod
    def validate_delay(cls, v: str | int | float | None) -> str | int | float | None:
        """Validate delay is a parsable, non-negative duration."""
        if v is not None:
            parse_duration(v)
        return v

    @field_validator("comment")
    @classmethod
    def validate_comment(cls, v: str | bool | None) -> str | bool | None:
        """Normalize `comment: true`, which carries no text, to 'use the default'."""
        if v is True:
            return None
        return v

    def parsed_delay(self) -> Duration | None:
        """Return the delay as a Duration, or None when not configured."""
        if self.delay is None:
            return None
        return parse_duration(self.delay)


class RuleSpec(_DelayedSpec):
    """Detailed form of a rule entry.

    Attributes:
        action: Action keyword (close, open, comment, merge, lock, ...)
        delay: Duration before the action runs ("7d", "3 days", or milliseconds)
        comment: Comment template, or false to suppress the comment
        message: Message template for plain `comment` actions
        labels: Labels to apply for `label` actions
        pattern: Literal text or /regex/flags for comment and commit rules
        user: Author or committer login filter for commit rules
        unless: Exemptions for merge rules
    """

    action: str = Field(..., min_length=1)
    message: str | None = None
    labels: list[str] | None = None
    pattern: str | None = None
    user: str | None = None
    unless: UnlessSpec | None = None


class DefaultSpec(_DelayedSpec):
    """Fallback delay and comment for one action kind.

    Attributes:
        delay: Duration used when a rule omits its own delay
        comment: Comment template used when a rule omits its own comment
    """


class RuleSetConfig(BaseModel):
    """Top-level rule configuration loaded from YAML.

    Attributes:
        labels: Label name to rule (shorthand action string or detailed rule)
        default: Action keyword to fallback delay/comment
        merges: Rules run when a pull request is merged
        comments: Ordered pattern rules run on new comments
        commits: Ordered pattern rules run on pushed commits
        closes: Rules run when an issue or pull request is closed
        protected_branches: Globs of base branches `merge` must never merge into
    """

    model_config = ConfigDict(extra="forbid")

    labels: dict[str, str | RuleSpec] = Field(default_factory=dict)
    default: dict[str, DefaultSpec] = Field(default_factory=dict)
    merges: list[RuleSpec] = Field(default_factory=list)
    comments: list[RuleSpec] = Field(default_factory=list)
    commits: list[RuleSpec] = Field(default_factory=list)
    closes: list[RuleSpec] = Field(default_factory=list)
    protected_branches: list[str] = Field(default_factory=list)

    @field_validator("labels", "default", mode="before")
    @classmethod
    def empty_mapping(cls, v: Any) -> Any:
        """Treat an empty YAML mapping section (`labels:` alone) as empty."""
        return {} if v is None else v

    @field_validator(
        "merges", "comments", "commits", "closes", "protected_branches", mode="before"
    )
    @classmethod
    def empty_list(cls, v: Any) -> Any:
        """Treat an empty YAML list section (`merges:` alone) as empty."""
        return [] if v is None else v

    def rule_count(self) -> int:
        """Total number of configured rules across all sections."""
        return (
            len(self.labels)
            + len(self.merges)
            + len(self.comments)
            + len(self.commits)
            + len(self.closes)
        )
