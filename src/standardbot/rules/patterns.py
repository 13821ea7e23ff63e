"""Pattern matching for comment and commit rules.

Two forms are accepted:

- `/<body>/<flags>`: a regular expression with trailing flags, e.g.
  `/\\/remind/i`. Body and flags are taken verbatim.
- anything else: a literal, case-insensitive substring. Regex
  metacharacters carry no meaning, so `duplicate of` matches exactly
  that text.

A trailing word of three or more letters that is not a set of known
flags, as in `/usr/local`, makes the whole pattern a literal path. Shorter
unknown flags are an error.

Patterns are compiled once, when the RuleSet is compiled.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# Trailing flags understood in the delimited form. `g` and `u` have no
# effect on a yes/no search and are accepted for compatibility.
_FLAG_MAP: dict[str, re.RegexFlag] = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "a": re.ASCII,
    "g": re.NOFLAG,
    "u": re.NOFLAG,
}

_DELIMITED = re.compile(r"^/(?P<body>.*)/(?P<flags>[A-Za-z]*)$", re.DOTALL)


class InvalidPatternError(ValueError):
    """Raised when a rule pattern cannot be compiled."""

    def __init__(self, pattern: str, reason: str) -> None:
        """Initialize the error.

        Args:
            pattern: The pattern as written in the configuration.
            reason: Why it could not be compiled.
        """
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid pattern {pattern!r}: {reason}")


PatternCompileError = InvalidPatternError


@dataclass(frozen=True)
class CompiledPattern:
    """A compiled rule pattern.

    Attributes:
        source: The pattern as written in the configuration.
        regex: The compiled regular expression.
        literal: Whether the source was a bare (literal) string.
    """

    source: str
    regex: re.Pattern[str]
    literal: bool

    def matches(self, text: str | None) -> bool:
        """Check whether the pattern occurs anywhere in text."""
        if not text:
            return False
        return self.regex.search(text) is not None

    __call__ = matches


def parse_flags(flags: str, *, pattern: str = "") -> re.RegexFlag:
    """Convert trailing regex flags to Python re flags.

    Args:
        flags: Flag letters, e.g. "i" or "im".
        pattern: Full pattern, for error messages.

    Returns:
        Combined re flags.

    Raises:
        InvalidPatternError: If a flag is unknown or repeated.
    """
    result = re.NOFLAG
    seen: set[str] = set()
    for flag in flags:
        if flag in seen:
            raise InvalidPatternError(pattern, f"repeated flag '{flag}'")
        if flag not in _FLAG_MAP:
            raise InvalidPatternError(pattern, f"unknown flag '{flag}'")
        seen.add(flag)
        result |= _FLAG_MAP[flag]
    return result


def _is_path_segment(flags: str) -> bool:
    # "local" in /usr/local, not a mistyped flag set
    return len(flags) >= 3 and any(flag not in _FLAG_MAP for flag in flags)


def compile_pattern(spec: str) -> CompiledPattern:
    """Compile a rule pattern specification.

    Args:
        spec: Literal text or /regex/flags.

    Returns:
        CompiledPattern usable as a predicate over text.

    Raises:
        InvalidPatternError: If spec is not a string, has unknown flags or
            is not a valid regular expression.

    Example:
        >>> compile_pattern("duplicate of").matches("Duplicate of #12")
        True
        >>> compile_pattern("/\\\\/remind/i").matches("please /remind me")
        True
    """
    if not isinstance(spec, str):
        raise InvalidPatternError(repr(spec), "pattern must be a string")

    delimited = _DELIMITED.match(spec) if len(spec) >= 2 else None
    if delimited is not None and _is_path_segment(delimited.group("flags")):
        delimited = None
    if delimited is None:
        return CompiledPattern(
            source=spec,
            regex=re.compile(re.escape(spec), re.IGNORECASE),
            literal=True,
        )

    flags = parse_flags(delimited.group("flags"), pattern=spec)
    try:
        regex = re.compile(delimited.group("body"), flags)
    except re.error as e:
        raise InvalidPatternError(spec, str(e)) from e

    return CompiledPattern(source=spec, regex=regex, literal=False)
