"""Failures of GitHub API calls, and how a response maps onto them.

    ExternalCallError
    ├── GitHubAPIError    the call was rejected; repeating it will not help
    ├── TransientError    5xx or network failure; may succeed later
    └── RateLimitError    GitHub refused to process the call for now
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx


class ExternalCallError(Exception):
    """A call to GitHub did not succeed."""


class GitHubAPIError(ExternalCallError):
    """GitHub answered with a non-retryable error status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_body: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body or {}

    @property
    def already_exists(self) -> bool:
        """True for a 422 saying the ref, tag or object is already there."""
        if self.status_code != 422:
            return False
        parts = [str(self.response_body.get("message", ""))]
        for detail in self.response_body.get("errors") or []:
            if isinstance(detail, dict):
                parts.append(str(detail.get("message", "")))
                parts.append(str(detail.get("code", "")))
        text = " ".join(parts).lower()
        return "already exist" in text or "already_exists" in text


class TransientError(ExternalCallError):
    """Server or network failure."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class RateLimitError(ExternalCallError):
    """Primary or secondary rate limit rejection."""

    def __init__(
        self,
        message: str,
        *,
        secondary: bool = False,
        reset_at: datetime | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message)
        self.secondary = secondary
        self.reset_at = reset_at
        self.retry_after = retry_after


@dataclass(frozen=True)
class RateLimitInfo:
    """The X-RateLimit-* headers of one response."""

    limit: int
    remaining: int
    reset_at: datetime
    used: int

    @classmethod
    def from_headers(cls, headers: httpx.Headers) -> RateLimitInfo | None:
        """Read the headers, or return None when the response has none."""
        if "X-RateLimit-Remaining" not in headers:
            return None
        return cls(
            limit=int(headers.get("X-RateLimit-Limit", 5000)),
            remaining=int(headers["X-RateLimit-Remaining"]),
            reset_at=datetime.fromtimestamp(int(headers.get("X-RateLimit-Reset", 0)), tz=UTC),
            used=int(headers.get("X-RateLimit-Used", 0)),
        )


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"message": response.text}
    return body if isinstance(body, dict) else {"message": str(body)}


def _retry_after(response: httpx.Response) -> int | None:
    value = response.headers.get("Retry-After", "")
    return int(value) if value.isdigit() and int(value) > 0 else None


def error_for_response(response: httpx.Response) -> ExternalCallError:
    """Classify a non-2xx response.

    403 and 429 are rate limits when GitHub says so in the message or the
    remaining quota is zero; otherwise a 403 is a permission error.
    """
    status = response.status_code
    body = _json_body(response)
    message = str(body.get("message", ""))
    lowered = message.lower()

    if status in (403, 429):
        quota = RateLimitInfo.from_headers(response.headers)
        reset_at = quota.reset_at if quota else None
        if "secondary rate limit" in lowered or "abuse" in lowered:
            return RateLimitError(
                f"GitHub secondary rate limit: {message}",
                secondary=True,
                reset_at=reset_at,
                retry_after=_retry_after(response),
            )
        if "rate limit" in lowered or (quota is not None and quota.remaining == 0):
            return RateLimitError(
                f"GitHub API rate limit exceeded: {message}",
                reset_at=reset_at,
                retry_after=_retry_after(response),
            )

    if status >= 500:
        return TransientError(
            f"GitHub API server error: {status}",
            status_code=status,
            retry_after=_retry_after(response),
        )

    return GitHubAPIError(
        f"GitHub API error: {status} - {message or response.reason_phrase}",
        status_code=status,
        response_body=body,
    )
