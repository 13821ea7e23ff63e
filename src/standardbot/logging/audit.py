"""structlog setup and the bot's audit events.

Every event the engine handles leaves a trail on stderr:

    event_received    debug, when an event enters the engine
    action_scheduled  one per request registered with the scheduler
    decision          one per event: what was evaluated and what was scheduled
    action_taken      one per executed action (warning when it failed)
    pending_dropped   on shutdown, when scheduled actions are discarded

Credentials never reach the output: a redaction processor runs over every
event dict before it is rendered.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.typing import EventDict, Processor, WrappedLogger

_GITHUB_TOKEN = "[REDACTED_GITHUB_TOKEN]"

# (pattern, replacement), applied in order to every string value
REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"gh[pousr]_[A-Za-z0-9_]{36,}"), _GITHUB_TOKEN),
    (re.compile(r"github_pat_[A-Za-z0-9_]{22,}"), _GITHUB_TOKEN),
    (re.compile(r"(?i)(authorization\s*[=:]\s*['\"]?)[^\s'\"]+"), r"\1[REDACTED]"),
    (re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._-]+"), r"\1[REDACTED]"),
    (re.compile(r"(token\s*[=:]\s*['\"]?)[A-Za-z0-9_-]{20,}"), r"\1[REDACTED]"),
)


def redact_secrets(value: Any) -> Any:
    """Return value with credentials masked, recursing into dicts and lists."""
    if isinstance(value, str):
        for pattern, replacement in REDACTIONS:
            value = pattern.sub(replacement, value)
        return value
    if isinstance(value, dict):
        return {key: redact_secrets(item) for key, item in value.items()}
    if isinstance(value, list):
        return [redact_secrets(item) for item in value]
    return value


def _redact(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    return redact_secrets(event_dict)


def configure_logging(verbose: bool = False, json_output: bool = True) -> None:
    """Send structlog events and stdlib module logs to stderr.

    Args:
        verbose: Emit debug events.
        json_output: One JSON object per line; otherwise coloured console output.
    """
    level = logging.DEBUG if verbose else logging.INFO

    # Module loggers (engine, scheduler, client) use the stdlib
    logging.basicConfig(
        stream=sys.stderr,
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _redact,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, optionally named."""
    return structlog.get_logger(name)


def log_event_received(event_id: str, event_kind: str, target: str) -> None:
    get_logger("standardbot.events").debug(
        "event_received", event_id=event_id, event_kind=event_kind, target=target
    )


def log_action_scheduled(target: str, action: str, delay_ms: int, trigger: str) -> None:
    get_logger("standardbot.scheduler").info(
        "action_scheduled", target=target, action=action, delay_ms=delay_ms, trigger=trigger
    )


def log_decision(
    event_id: str,
    event_kind: str,
    target: str,
    rules_evaluated: int,
    rules_failed: int,
    actions: list[dict[str, Any]],
    disposition: str,
) -> None:
    """Record what the engine decided for one event.

    Args:
        event_id: Delivery identifier.
        event_kind: EventKind value, e.g. "label_added".
        target: "owner/repo#number".
        rules_evaluated: Rules that matched the event and were resolved.
        rules_failed: Rules whose resolution raised.
        actions: One {"action", "delay_ms", "trigger"} dict per scheduled request.
        disposition: "scheduled", or "no_action" when nothing was scheduled.
    """
    get_logger("standardbot.audit").info(
        "decision",
        event_id=event_id,
        event_kind=event_kind,
        target=target,
        rules_evaluated=rules_evaluated,
        rules_failed=rules_failed,
        actions=actions,
        action_count=len(actions),
        disposition=disposition,
    )


def log_action_taken(
    target: str,
    action: str,
    result: str,
    message: str = "",
    trigger: str = "",
) -> None:
    """Record the outcome of an executed action.

    result is an ActionStatus value; "failure" is logged as a warning.
    """
    log = get_logger("standardbot.actions")
    emit = log.warning if result == "failure" else log.info
    emit(
        "action_taken",
        target=target,
        action=action,
        result=result,
        message=message,
        trigger=trigger,
    )


def log_pending_dropped(count: int) -> None:
    """Warn that `count` scheduled actions were discarded at shutdown."""
    if not count:
        return
    get_logger("standardbot.scheduler").warning(
        "pending_dropped",
        count=count,
        message="Scheduled actions live in memory only and will not run after restart",
    )
