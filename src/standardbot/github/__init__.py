"""GitHub client capability and the normalized event model."""

from standardbot.github.auth import AuthenticationError, get_github_token, mask_token
from standardbot.github.client import GitHubCapability, GitHubClient
from standardbot.github.errors import (
    ExternalCallError,
    GitHubAPIError,
    RateLimitError,
    RateLimitInfo,
    TransientError,
)
from standardbot.github.events import (
    CommentInfo,
    CommitInfo,
    Event,
    EventKind,
    PullRequestInfo,
    TargetKind,
)

__all__ = [
    "AuthenticationError",
    "CommentInfo",
    "CommitInfo",
    "Event",
    "EventKind",
    "ExternalCallError",
    "GitHubAPIError",
    "GitHubCapability",
    "GitHubClient",
    "PullRequestInfo",
    "RateLimitError",
    "RateLimitInfo",
    "TargetKind",
    "TransientError",
    "get_github_token",
    "mask_token",
]
