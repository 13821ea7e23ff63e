"""Rule compilation and resolution."""

from standardbot.rules.patterns import (
    CompiledPattern,
    InvalidPatternError,
    PatternCompileError,
    compile_pattern,
)
from standardbot.rules.resolver import RuleResolver, is_work_in_progress, render_template
from standardbot.rules.ruleset import RuleSet, SkippedRule
from standardbot.rules.schema import ActionKind, ActionRequest, Default, Resolution, Rule

__all__ = [
    "ActionKind",
    "ActionRequest",
    "CompiledPattern",
    "Default",
    "InvalidPatternError",
    "PatternCompileError",
    "Resolution",
    "Rule",
    "RuleResolver",
    "RuleSet",
    "SkippedRule",
    "compile_pattern",
    "is_work_in_progress",
    "render_template",
]
