"""Event processing: resolve, schedule, execute.

The Engine is the entry point for a normalized Event. It resolves the event
against the rules, hands every resulting request to the Scheduler and, when
each request fires, runs it through the ActionExecutor.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any

from standardbot.actions.executor import ActionExecutor, ActionResult
from standardbot.github.errors import ExternalCallError
from standardbot.github.events import CommitInfo, Event, EventKind
from standardbot.logging.audit import (
    log_action_scheduled,
    log_action_taken,
    log_decision,
    log_event_received,
)
from standardbot.rules.resolver import RuleResolver
from standardbot.rules.schema import ActionKind
from standardbot.scheduler import Scheduler

if TYPE_CHECKING:
    from standardbot.clock import Clock
    from standardbot.github.client import GitHubCapability
    from standardbot.rules.ruleset import RuleSet
    from standardbot.rules.schema import ActionRequest, Resolution

logger = logging.getLogger(__name__)


@dataclass
class Dispatch:
    """Outcome of processing one event.

    Attributes:
        resolution: What the rules resolved the event to.
        futures: One future per scheduled request, resolving to its
            ActionResult. Inline zero-delay requests are already done.
    """

    resolution: Resolution
    futures: list[asyncio.Future[Any]] = field(default_factory=list)

    async def wait(self) -> list[ActionResult]:
        """Wait for every scheduled request and return the results that ran.

        Requests superseded before firing are left out.
        """
        outcomes = await asyncio.gather(*self.futures, return_exceptions=True)
        return [outcome for outcome in outcomes if isinstance(outcome, ActionResult)]


class Engine:
    """Processes events one at a time; actions run on the scheduler."""

    def __init__(
        self,
        resolver: RuleResolver,
        scheduler: Scheduler,
        executor: ActionExecutor,
        client: GitHubCapability,
    ) -> None:
        """Initialize the engine.

        Args:
            resolver: Rule resolver.
            scheduler: Scheduler for delayed actions.
            executor: Executor for fired actions.
            client: GitHub client, used to fetch pushed commits.
        """
        self._resolver = resolver
        self._scheduler = scheduler
        self._executor = executor
        self._client = client

    @classmethod
    def build(
        cls,
        ruleset: RuleSet,
        client: GitHubCapability,
        *,
        clock: Clock | None = None,
        dry_run: bool = False,
    ) -> Engine:
        """Wire an engine from a compiled RuleSet and a client.

        Args:
            ruleset: Compiled rules.
            client: GitHub client capability.
            clock: Clock shared by the scheduler and the executor.
            dry_run: Log actions instead of performing them.

        Returns:
            A ready Engine with its own Scheduler.
        """
        return cls(
            resolver=RuleResolver(ruleset),
            scheduler=Scheduler(clock),
            executor=ActionExecutor(client, clock=clock, dry_run=dry_run),
            client=client,
        )

    @property
    def scheduler(self) -> Scheduler:
        """The scheduler holding pending actions."""
        return self._scheduler

    async def process(self, event: Event) -> Dispatch:
        """Resolve an event and schedule its actions.

        Zero-delay actions have run by the time this returns, except merges
        and actions whose key is still busy with an earlier run; those, and
        all delayed actions, run later on the scheduler.

        Args:
            event: Normalized event.

        Returns:
            Dispatch with the resolution and one future per request.
        """
        log_event_received(event.id, event.kind.value, event.target_id)

        if event.kind == EventKind.COMMIT_PUSHED and not event.commits:
            event = await self._with_commits(event)

        resolution = self._resolver.resolve(event)
        dispatch = Dispatch(resolution=resolution)

        for request in resolution.requests:
            log_action_scheduled(
                request.target_id, request.kind.value, request.delay_ms, request.trigger
            )
            future = await self._scheduler.schedule(
                request.key,
                request.delay_ms,
                partial(self._execute, request),
                # The readiness gate can poll for minutes
                background=request.kind == ActionKind.MERGE,
            )
            dispatch.futures.append(future)

        log_decision(
            event_id=event.id,
            event_kind=event.kind.value,
            target=event.target_id,
            rules_evaluated=resolution.rules_evaluated,
            rules_failed=resolution.rules_failed,
            actions=[
                {"action": r.kind.value, "delay_ms": r.delay_ms, "trigger": r.trigger}
                for r in resolution.requests
            ],
            disposition="scheduled" if resolution.has_requests else "no_action",
        )
        return dispatch

    async def _with_commits(self, event: Event) -> Event:
        """Fill in the commits of a push event from the pull request."""
        try:
            raw = await self._client.list_commits(event.owner, event.repo, event.target_number)
        except ExternalCallError as e:
            logger.warning("Could not list commits of %s: %s", event.target_id, e)
            return event
        commits = [CommitInfo.from_api(item) for item in raw]
        logger.debug("Fetched %d commit(s) for %s", len(commits), event.target_id)
        return event.model_copy(update={"commits": commits})

    async def _execute(self, request: ActionRequest) -> ActionResult:
        result = await self._executor.execute(request)
        log_action_taken(
            result.target,
            result.action.value,
            result.status.value,
            result.message,
            request.trigger,
        )
        return result
