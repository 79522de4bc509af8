from unittest.mock import Mock, patch

import pytest
import requests

from app.services.jira import JiraNotifier, ticket_label
from app.services.notifier import WebhookNotifier, deliver_report
from scanner.models import (
    AggregatedReport,
    Category,
    CategoryReport,
    ErrorEntry,
    Finding,
    Location,
    Severity,
    Verdict,
)


def _finding(severity, rule_id="rule", fingerprint="ab" * 32):
    return Finding(
        category=Category.SAST,
        tools=("semgrep",),
        rule_id=rule_id,
        severity=severity,
        location=Location(path="src/app.py", start_line=3, end_line=3),
        description="Use of eval",
        fingerprint=fingerprint,
    )


def _report(findings=(), verdict=Verdict.FAIL, errors=()):
    return AggregatedReport(
        run_id="run-7",
        started_at="2026-01-01T00:00:00+00:00",
        finished_at="2026-01-01T00:01:00+00:00",
        duration_seconds=60.0,
        verdict=verdict,
        categories={
            Category.SAST: CategoryReport(
                category=Category.SAST,
                threshold=Severity.HIGH,
                verdict=verdict,
                findings=tuple(findings),
            )
        },
        tools=(),
        errors=tuple(errors),
    )


def test_slack_payload():
    notifier = WebhookNotifier("https://hooks.slack.com/services/T/B/X", report_url="https://ci/run/7")

    payload = notifier.build_payload(_report([_finding(Severity.CRITICAL)]))

    assert "FAILED" in payload["text"]
    assert "1 Critical" in payload["text"]
    assert "<https://ci/run/7|Open Report>" in payload["text"]


def test_generic_payload_uses_embeds():
    notifier = WebhookNotifier("https://discord.com/api/webhooks/1/x")

    payload = notifier.build_payload(_report(verdict=Verdict.PASS))

    embed = payload["embeds"][0]
    assert "run-7" in embed["title"]
    assert {"name": "Status", "value": "PASSED", "inline": True} in embed["fields"]


def test_payload_never_contains_credentials():
    notifier = WebhookNotifier(
        "https://discord.com/api/webhooks/1/x",
        project_name="svc-tok3n-xyz",
        secrets=["tok3n-xyz"],
    )

    payload = notifier.build_payload(_report())

    assert "tok3n-xyz" not in str(payload)


def test_passing_run_is_silent_unless_asked():
    report = _report(verdict=Verdict.PASS)

    with patch("app.services.notifier.requests.post") as post:
        WebhookNotifier("https://example.com/hook").notify(report)
        post.assert_not_called()

        WebhookNotifier("https://example.com/hook", notify_on_success=True).notify(report)
        post.assert_called_once()


def test_passing_run_with_errors_still_notifies():
    report = _report(verdict=Verdict.PASS, errors=[ErrorEntry(task_id="build", kind="failure", message="x")])

    with patch("app.services.notifier.requests.post") as post:
        WebhookNotifier("https://example.com/hook").notify(report)

    post.assert_called_once()
    assert post.call_args.kwargs["timeout"] == 5


def test_delivery_failure_is_contained():
    broken = WebhookNotifier("https://example.com/hook")
    working = Mock()
    working.name = "other"

    with patch("app.services.notifier.requests.post", side_effect=requests.ConnectionError("down")):
        outcome = deliver_report(_report(), [broken, working])

    assert outcome == {"webhook": False, "other": True}
    working.notify.assert_called_once()


def test_http_error_counts_as_failed_delivery():
    response = Mock()
    response.raise_for_status.side_effect = requests.HTTPError("500")

    with patch("app.services.notifier.requests.post", return_value=response):
        outcome = deliver_report(_report(), [WebhookNotifier("https://example.com/hook")])

    assert outcome == {"webhook": False}


@pytest.fixture
def jira_client():
    client = Mock()
    client.search_issues.return_value = []
    client.create_issue.return_value = Mock(key="SEC-1")
    return client


def test_jira_tickets_only_for_severe_findings(jira_client):
    report = _report([
        _finding(Severity.CRITICAL, rule_id="a", fingerprint="a" * 64),
        _finding(Severity.HIGH, rule_id="b", fingerprint="b" * 64),
        _finding(Severity.MEDIUM, rule_id="c", fingerprint="c" * 64),
    ])
    notifier = JiraNotifier("https://jira", "bot", "token", "SEC", client=jira_client)

    notifier.notify(report)

    assert jira_client.create_issue.call_count == 2
    fields = jira_client.create_issue.call_args_list[0].kwargs["fields"]
    assert fields["project"] == {"key": "SEC"}
    assert ticket_label(report.all_findings()[0]) in fields["labels"]
    assert "priority" not in fields


def test_jira_skips_existing_tickets(jira_client):
    jira_client.search_issues.return_value = [Mock()]
    notifier = JiraNotifier("https://jira", "bot", "token", "SEC", client=jira_client)

    notifier.notify(_report([_finding(Severity.CRITICAL)]))

    jira_client.create_issue.assert_not_called()
    jql = jira_client.search_issues.call_args.args[0]
    assert "scangate-abababababababab" in jql


def test_jira_error_on_one_ticket_does_not_stop_others(jira_client):
    jira_client.create_issue.side_effect = [RuntimeError("boom"), Mock(key="SEC-2")]
    notifier = JiraNotifier("https://jira", "bot", "token", "SEC", client=jira_client, set_priority=True)

    notifier.notify(_report([
        _finding(Severity.CRITICAL, rule_id="a", fingerprint="a" * 64),
        _finding(Severity.HIGH, rule_id="b", fingerprint="b" * 64),
    ]))

    assert jira_client.create_issue.call_count == 2
    assert jira_client.create_issue.call_args.kwargs["fields"]["priority"] == {"name": "High"}
