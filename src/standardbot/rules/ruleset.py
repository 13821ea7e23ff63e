"""Compiled rule set.

RuleSet.from_config turns the validated configuration into immutable Rule
objects: action keywords become ActionKind values, patterns are compiled,
delays are parsed and label names are lower-cased. A rule that cannot be
compiled is logged and skipped; its siblings are unaffected.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from standardbot.rules.patterns import InvalidPatternError, compile_pattern
from standardbot.rules.schema import ActionKind, Default, Rule

if TYPE_CHECKING:
    from standardbot.config.schema import DefaultSpec, RuleSetConfig, RuleSpec

logger = logging.getLogger(__name__)

# Actions each config section may use
SECTION_ACTIONS: dict[str, frozenset[ActionKind]] = {
    "labels": frozenset(
        {
            ActionKind.CLOSE,
            ActionKind.OPEN,
            ActionKind.COMMENT,
            ActionKind.MERGE,
            ActionKind.LOCK,
            ActionKind.LABEL,
            ActionKind.BLOCK_MERGE,
        }
    ),
    "comments": frozenset({ActionKind.LABEL, ActionKind.DELETE_COMMENT}),
    "commits": frozenset({ActionKind.LABEL}),
    "merges": frozenset({ActionKind.DELETE_BRANCH, ActionKind.TAG}),
    "closes": frozenset({ActionKind.LOCK}),
}

# Sections whose rules select by pattern
PATTERN_SECTIONS = frozenset({"comments", "commits"})


class RuleCompileError(ValueError):
    """Raised when a single rule cannot be compiled."""


@dataclass(frozen=True)
class SkippedRule:
    """A configured rule that was left out of the compiled set."""

    section: str
    name: str
    reason: str


@dataclass(frozen=True)
class RuleSet:
    """Immutable, compiled rules.

    Attributes:
        labels: Lower-cased label name to rule.
        defaults: Per-action fallback delay and comment.
        merges: Rules run when a pull request is merged.
        comments: Ordered comment rules.
        commits: Ordered commit rules.
        closes: Rules run when a target is closed.
        protected_branches: Base branch globs `merge` must not merge into.
        skipped: Rules that failed to compile.
    """

    labels: Mapping[str, Rule] = field(default_factory=dict)
    defaults: Mapping[ActionKind, Default] = field(default_factory=dict)
    merges: tuple[Rule, ...] = ()
    comments: tuple[Rule, ...] = ()
    commits: tuple[Rule, ...] = ()
    closes: tuple[Rule, ...] = ()
    protected_branches: tuple[str, ...] = ()
    skipped: tuple[SkippedRule, ...] = ()

    @classmethod
    def from_config(cls, config: RuleSetConfig) -> RuleSet:
        """Compile a validated configuration.

        Args:
            config: Validated rule configuration.

        Returns:
            The compiled RuleSet. Rules that could not be compiled are
            listed in `skipped` instead of raising.
        """
        skipped: list[SkippedRule] = []

        labels: dict[str, Rule] = {}
        for raw_name, spec in config.labels.items():
            name = raw_name.lower()
            if name in labels:
                logger.warning("Label rule '%s' is defined more than once; last wins", name)
            rule = _compile_or_skip("labels", name, spec, skipped)
            if rule is not None:
                labels[name] = rule

        sections: dict[str, tuple[Rule, ...]] = {}
        for section in ("merges", "comments", "commits", "closes"):
            compiled: list[Rule] = []
            for index, spec in enumerate(getattr(config, section)):
                rule = _compile_or_skip(section, f"{section}[{index}]", spec, skipped)
                if rule is not None:
                    compiled.append(rule)
            sections[section] = tuple(compiled)

        ruleset = cls(
            labels=labels,
            defaults=_compile_defaults(config.default),
            protected_branches=tuple(config.protected_branches),
            skipped=tuple(skipped),
            **sections,
        )
        logger.debug(
            "Compiled %d rules (%d skipped)", ruleset.rule_count, len(ruleset.skipped)
        )
        return ruleset

    @property
    def rule_count(self) -> int:
        """Number of compiled rules across all sections."""
        return (
            len(self.labels)
            + len(self.merges)
            + len(self.comments)
            + len(self.commits)
            + len(self.closes)
        )

    @property
    def blocking_labels(self) -> tuple[str, ...]:
        """Labels whose rule is `block_merge`; their presence prevents merging."""
        return tuple(
            name for name, rule in self.labels.items() if rule.action == ActionKind.BLOCK_MERGE
        )

    def label_rule(self, label: str) -> Rule | None:
        """Look up the rule for a label, case-insensitively."""
        return self.labels.get(label.lower())

    def default_for(self, action: ActionKind) -> Default:
        """Get the default for an action kind (empty when unconfigured)."""
        return self.defaults.get(action, Default())


def compile_rule(section: str, name: str, spec: str | RuleSpec) -> Rule:
    """Compile one configured rule.

    Args:
        section: Config section the rule belongs to.
        name: Label name or positional name of the rule.
        spec: Shorthand action string or detailed rule.

    Returns:
        The compiled Rule.

    Raises:
        RuleCompileError: If the action is unknown or not allowed in this
            section, or a required field is missing.
        InvalidPatternError: If the pattern cannot be compiled.
    """
    if isinstance(spec, str):
        action_name, detail = spec, None
    else:
        action_name, detail = spec.action, spec

    try:
        action = ActionKind(action_name.strip().lower())
    except ValueError:
        raise RuleCompileError(f"unsupported action '{action_name}'") from None

    if action not in SECTION_ACTIONS[section]:
        raise RuleCompileError(f"action '{action.value}' is not supported in '{section}'")

    if detail is None:
        return Rule(action=action, section=section, name=name)

    pattern = None
    if section in PATTERN_SECTIONS:
        if not detail.pattern:
            raise RuleCompileError("a pattern is required")
        pattern = compile_pattern(detail.pattern)

    labels = tuple(detail.labels or ())
    if action == ActionKind.LABEL and not labels:
        raise RuleCompileError("a 'label' rule needs at least one label")

    return Rule(
        action=action,
        section=section,
        name=name,
        delay=detail.parsed_delay(),
        comment=detail.comment if detail.comment is not True else None,
        message=detail.message,
        labels=labels,
        pattern=pattern,
        user=detail.user,
        branches=tuple(detail.unless.branches) if detail.unless else (),
    )


def _compile_or_skip(
    section: str,
    name: str,
    spec: str | RuleSpec,
    skipped: list[SkippedRule],
) -> Rule | None:
    try:
        return compile_rule(section, name, spec)
    except (RuleCompileError, InvalidPatternError) as e:
        logger.warning("Skipping rule %s in '%s': %s", name, section, e)
        skipped.append(SkippedRule(section=section, name=name, reason=str(e)))
        return None


def _compile_defaults(specs: Mapping[str, DefaultSpec]) -> dict[ActionKind, Default]:
    defaults: dict[ActionKind, Default] = {}
    for key, spec in specs.items():
        try:
            action = ActionKind(key.strip().lower())
        except ValueError:
            logger.warning("Ignoring default for unsupported action '%s'", key)
            continue
        defaults[action] = Default(
            delay=spec.parsed_delay(),
            comment=spec.comment if spec.comment is not True else None,
        )
    return defaults
