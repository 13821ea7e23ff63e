"""Logging for standard-bot: structlog setup, secret redaction and audit events.

    from standardbot.logging import configure_logging, get_logger

    configure_logging(verbose=False, json_output=True)
    get_logger(__name__).info("started")
"""

from standardbot.logging.audit import (
    configure_logging,
    get_logger,
    log_action_scheduled,
    log_action_taken,
    log_decision,
    log_event_received,
    log_pending_dropped,
    redact_secrets,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "log_action_scheduled",
    "log_action_taken",
    "log_decision",
    "log_event_received",
    "log_pending_dropped",
    "redact_secrets",
]
