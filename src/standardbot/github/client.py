"""GitHub REST calls the actions are carried out with.

GitHubCapability is what the executor, merge gate and engine depend on;
GitHubClient implements it over httpx.

Retry policy of GitHubClient:

- Rate limit rejections are waited out and re-sent, GitHub did not act on them.
  Primary limits wait for the reset (or Retry-After) plus 0-10s jitter;
  secondary limits wait 1, 2, 4, then 8 minutes.
- 5xx and network failures back off 5, 10, 20, then 40 seconds, unless the
  call was made with retry=False. Merges, tag objects and refs are created
  that way, since a failure there may hide a success.
- Anything else raises GitHubAPIError at once.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote

import httpx

from standardbot import __version__
from standardbot.clock import Clock, SystemClock
from standardbot.github.auth import get_github_token, mask_token
from standardbot.github.errors import (
    ExternalCallError,
    RateLimitError,
    RateLimitInfo,
    TransientError,
    error_for_response,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class GitHubCapability(Protocol):
    """Repository operations performed on behalf of resolved actions."""

    async def set_issue_state(
        self, owner: str, repo: str, number: int, state: str
    ) -> dict[str, Any]: ...

    async def create_comment(
        self, owner: str, repo: str, number: int, body: str
    ) -> dict[str, Any]: ...

    async def delete_comment(self, owner: str, repo: str, comment_id: int) -> None: ...

    async def add_labels(
        self, owner: str, repo: str, number: int, labels: Sequence[str]
    ) -> list[dict[str, Any]]: ...

    async def remove_label(self, owner: str, repo: str, number: int, label: str) -> None: ...

    async def lock_conversation(
        self, owner: str, repo: str, number: int, lock_reason: str = "resolved"
    ) -> None: ...

    async def get_issue(self, owner: str, repo: str, number: int) -> dict[str, Any]: ...

    async def delete_ref(self, owner: str, repo: str, ref: str) -> None: ...

    async def create_tag(
        self,
        owner: str,
        repo: str,
        *,
        tag: str,
        message: str,
        object_sha: str,
        object_type: str = "commit",
    ) -> dict[str, Any]: ...

    async def create_ref(self, owner: str, repo: str, *, ref: str, sha: str) -> dict[str, Any]: ...

    async def merge_pull_request(
        self, owner: str, repo: str, number: int, *, sha: str | None = None
    ) -> dict[str, Any]: ...

    async def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]: ...

    async def get_combined_status(self, owner: str, repo: str, ref: str) -> dict[str, Any]: ...

    async def create_commit_status(
        self,
        owner: str,
        repo: str,
        sha: str,
        *,
        state: str,
        context: str,
        description: str = "",
    ) -> dict[str, Any]: ...

    async def list_commits(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]: ...


def _as_dict(result: Any) -> dict[str, Any]:
    return result if isinstance(result, dict) else {}


class GitHubClient:
    """httpx implementation of GitHubCapability.

    Use it as an async context manager, or call aclose() when done. Every
    wait goes through `clock`; `transport` replaces the network, e.g. with
    httpx.MockTransport.
    """

    # Pause before sending once fewer requests than this remain
    LOW_QUOTA = 100
    JITTER_SECONDS = 10.0

    MAX_RETRIES = 4
    BACKOFF_SECONDS = (5, 10, 20, 40)
    SECONDARY_BACKOFF_MINUTES = (1, 2, 4, 8)

    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str = "https://api.github.com",
        user_agent: str = f"standard-bot/{__version__}",
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token if token is not None else get_github_token()
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._clock = clock or SystemClock()
        self._transport = transport
        self._http: httpx.AsyncClient | None = None
        self._quota: RateLimitInfo | None = None

    async def __aenter__(self) -> GitHubClient:
        self._connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    @property
    def rate_limit(self) -> RateLimitInfo | None:
        """Quota reported by the most recent response that carried one."""
        return self._quota

    def _connect(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Authorization": f"token {self._token}",
                    "Accept": "application/vnd.github+json",
                    "User-Agent": self._user_agent,
                },
                timeout=30.0,
                transport=self._transport,
            )
        return self._http

    async def _wait_for_quota(self) -> None:
        if self._quota is None or self._quota.remaining >= self.LOW_QUOTA:
            return
        until_reset = (self._quota.reset_at - self._clock.now()).total_seconds()
        wait = max(0.0, until_reset) + random.uniform(0, self.JITTER_SECONDS)
        logger.warning(
            "Only %d API requests left, pausing %.0fs until the quota resets",
            self._quota.remaining,
            wait,
        )
        await self._clock.sleep(wait)

    def _retry_delay(self, error: ExternalCallError, retries: int) -> float:
        """Seconds to wait before retry number `retries + 1`.

        Raises:
            ExternalCallError: `error` itself, when it should not be retried.
        """
        if isinstance(error, RateLimitError):
            if error.secondary:
                return float(error.retry_after or self.SECONDARY_BACKOFF_MINUTES[retries] * 60)
            if error.retry_after:
                return error.retry_after + random.uniform(0, self.JITTER_SECONDS)
            if error.reset_at is not None:
                until_reset = (error.reset_at - self._clock.now()).total_seconds()
                return max(0.0, until_reset) + random.uniform(0, self.JITTER_SECONDS)
            raise error
        if isinstance(error, TransientError):
            return float(error.retry_after or self.BACKOFF_SECONDS[retries])
        raise error

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        retry: bool = True,
    ) -> httpx.Response:
        """Send one logical request, retrying per the policy above.

        Args:
            method: HTTP method.
            path: Path relative to the API root, or an absolute URL.
            params: Query parameters.
            json: Request body.
            retry: Whether 5xx and network failures may be re-sent.

        Returns:
            The successful response.

        Raises:
            ExternalCallError: When the call failed for good.
        """
        http = self._connect()
        retries = 0
        while True:
            await self._wait_for_quota()
            try:
                response = await http.request(method, path, params=params, json=json)
            except httpx.RequestError as e:
                error: ExternalCallError = TransientError(f"Network error: {e}")
                error.__cause__ = e
            else:
                self._quota = RateLimitInfo.from_headers(response.headers) or self._quota
                if response.is_success:
                    return response
                error = error_for_response(response)

            if retries >= self.MAX_RETRIES:
                raise error
            if isinstance(error, TransientError) and not retry:
                raise error
            delay = self._retry_delay(error, retries)
            retries += 1
            logger.warning(
                "%s %s failed (%s), retry %d/%d in %.0fs",
                method,
                path,
                error,
                retries,
                self.MAX_RETRIES,
                delay,
            )
            await self._clock.sleep(delay)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        retry: bool = True,
    ) -> Any:
        """Call the API and return the decoded JSON body (None when empty)."""
        response = await self._send(method, path, params=params, json=json, retry=retry)
        return response.json() if response.content else None

    async def paginate(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        max_pages: int | None = None,
    ) -> AsyncIterator[Any]:
        """Yield the items of a list endpoint, following rel="next" links."""
        url: str | None = path
        query: dict[str, Any] | None = {"per_page": 100, **(params or {})}
        pages = 0
        while url and (max_pages is None or pages < max_pages):
            response = await self._send("GET", url, params=query)
            page = response.json() if response.content else []
            for item in page if isinstance(page, list) else [page]:
                yield item
            pages += 1
            url = response.links.get("next", {}).get("url")
            # The next link carries its own query string
            query = None

    # Issues and comments

    async def get_issue(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        return _as_dict(await self.request("GET", f"/repos/{owner}/{repo}/issues/{number}"))

    async def set_issue_state(
        self, owner: str, repo: str, number: int, state: str
    ) -> dict[str, Any]:
        """Set an issue or pull request to "open" or "closed"."""
        return _as_dict(
            await self.request(
                "PATCH", f"/repos/{owner}/{repo}/issues/{number}", json={"state": state}
            )
        )

    async def create_comment(
        self, owner: str, repo: str, number: int, body: str
    ) -> dict[str, Any]:
        return _as_dict(
            await self.request(
                "POST", f"/repos/{owner}/{repo}/issues/{number}/comments", json={"body": body}
            )
        )

    async def delete_comment(self, owner: str, repo: str, comment_id: int) -> None:
        await self.request("DELETE", f"/repos/{owner}/{repo}/issues/comments/{comment_id}")

    async def add_labels(
        self, owner: str, repo: str, number: int, labels: Sequence[str]
    ) -> list[dict[str, Any]]:
        """Add labels; returns every label the target has afterwards."""
        result = await self.request(
            "POST", f"/repos/{owner}/{repo}/issues/{number}/labels", json={"labels": list(labels)}
        )
        return result if isinstance(result, list) else []

    async def remove_label(self, owner: str, repo: str, number: int, label: str) -> None:
        name = quote(label, safe="")
        await self.request("DELETE", f"/repos/{owner}/{repo}/issues/{number}/labels/{name}")

    async def lock_conversation(
        self, owner: str, repo: str, number: int, lock_reason: str = "resolved"
    ) -> None:
        await self.request(
            "PUT", f"/repos/{owner}/{repo}/issues/{number}/lock", json={"lock_reason": lock_reason}
        )

    # Pull requests and statuses

    async def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        """Fetch a pull request; `mergeable` may still be null while GitHub computes it."""
        return _as_dict(await self.request("GET", f"/repos/{owner}/{repo}/pulls/{number}"))

    async def list_commits(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        return [
            item async for item in self.paginate(f"/repos/{owner}/{repo}/pulls/{number}/commits")
        ]

    async def merge_pull_request(
        self, owner: str, repo: str, number: int, *, sha: str | None = None
    ) -> dict[str, Any]:
        """Merge a pull request, only if its head is still `sha` when given."""
        return _as_dict(
            await self.request(
                "PUT",
                f"/repos/{owner}/{repo}/pulls/{number}/merge",
                json={"sha": sha} if sha else {},
                retry=False,
            )
        )

    async def get_combined_status(self, owner: str, repo: str, ref: str) -> dict[str, Any]:
        return _as_dict(await self.request("GET", f"/repos/{owner}/{repo}/commits/{ref}/status"))

    async def create_commit_status(
        self,
        owner: str,
        repo: str,
        sha: str,
        *,
        state: str,
        context: str,
        description: str = "",
    ) -> dict[str, Any]:
        return _as_dict(
            await self.request(
                "POST",
                f"/repos/{owner}/{repo}/statuses/{sha}",
                json={"state": state, "context": context, "description": description},
            )
        )

    # Git data

    async def delete_ref(self, owner: str, repo: str, ref: str) -> None:
        """Delete a ref given without its "refs/" prefix, e.g. "heads/feature-x"."""
        await self.request("DELETE", f"/repos/{owner}/{repo}/git/refs/{ref}")

    async def create_tag(
        self,
        owner: str,
        repo: str,
        *,
        tag: str,
        message: str,
        object_sha: str,
        object_type: str = "commit",
    ) -> dict[str, Any]:
        """Create an annotated tag object; point a ref at its "sha" to publish it."""
        return _as_dict(
            await self.request(
                "POST",
                f"/repos/{owner}/{repo}/git/tags",
                json={"tag": tag, "message": message, "object": object_sha, "type": object_type},
                retry=False,
            )
        )

    async def create_ref(self, owner: str, repo: str, *, ref: str, sha: str) -> dict[str, Any]:
        return _as_dict(
            await self.request(
                "POST", f"/repos/{owner}/{repo}/git/refs", json={"ref": ref, "sha": sha}, retry=False
            )
        )

    def __repr__(self) -> str:
        return f"GitHubClient(base_url={self._base_url!r}, token={mask_token(self._token)!r})"
