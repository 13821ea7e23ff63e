"""Tests for secret redaction and audit log events."""

from structlog.testing import capture_logs

from standardbot.logging import (
    log_action_taken,
    log_decision,
    log_pending_dropped,
    redact_secrets,
)

TOKEN = "ghp_" + "a" * 36


class TestRedactSecrets:
    def test_github_token(self):
        assert redact_secrets(f"using {TOKEN}") == "using [REDACTED_GITHUB_TOKEN]"

    def test_authorization_header(self):
        assert "secretvalue" not in redact_secrets("Authorization: secretvalue")

    def test_nested(self):
        redacted = redact_secrets({"headers": [f"token {TOKEN}"], "count": 3})
        assert TOKEN not in redacted["headers"][0]
        assert redacted["count"] == 3


class TestAuditEvents:
    def test_decision(self):
        with capture_logs() as logs:
            log_decision(
                event_id="delivery-1",
                event_kind="label_added",
                target="octocat/hello-world#7",
                rules_evaluated=1,
                rules_failed=0,
                actions=[{"action": "close", "delay_ms": 0, "trigger": "label:wontfix"}],
                disposition="scheduled",
            )

        (entry,) = logs
        assert entry["event"] == "decision"
        assert entry["action_count"] == 1
        assert entry["disposition"] == "scheduled"

    def test_failed_action_is_a_warning(self):
        with capture_logs() as logs:
            log_action_taken("octocat/hello-world#7", "merge", "failure", "checks failed")
        assert logs[0]["log_level"] == "warning"

    def test_pending_dropped(self):
        with capture_logs() as logs:
            log_pending_dropped(0)
            log_pending_dropped(2)

        (entry,) = logs
        assert entry["count"] == 2
        assert entry["log_level"] == "warning"
