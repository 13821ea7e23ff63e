"""Where the bot's GitHub credential comes from."""

from __future__ import annotations

import os

# First non-empty value wins
TOKEN_ENV_VARS = ("STANDARDBOT_TOKEN", "GITHUB_TOKEN")


class AuthenticationError(Exception):
    """No usable GitHub credential."""


def get_github_token() -> str:
    """Read the token from STANDARDBOT_TOKEN, falling back to GITHUB_TOKEN.

    Raises:
        AuthenticationError: If both are unset or blank.
    """
    for name in TOKEN_ENV_VARS:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    names = " or ".join(TOKEN_ENV_VARS)
    raise AuthenticationError(
        f"No GitHub token: set {names} to a token that can write to the repository"
    )


def mask_token(token: str) -> str:
    """Shorten a token to its first and last four characters, e.g. "ghp_...1234"."""
    return "***" if len(token) <= 8 else f"{token[:4]}...{token[-4:]}"
