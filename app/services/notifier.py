import logging
from typing import Iterable, Optional

import requests

from scanner.guardrails import redact_data
from scanner.models import AggregatedReport, Severity, Verdict

logger = logging.getLogger("scangate.integrations.notifier")

GREEN = "#10b981"
RED = "#ef4444"


class WebhookNotifier:
    """
    Sends a run summary card to a chat webhook.
    Auto-detects Slack vs Generic (Discord / Teams embeds) formats.
    """

    name = "webhook"

    def __init__(
        self,
        webhook_url: str,
        *,
        project_name: str = "scangate",
        report_url: Optional[str] = None,
        notify_on_success: bool = False,
        secrets: Iterable[str] = (),
        timeout: float = 5,
    ):
        self.webhook_url = webhook_url
        self.project_name = project_name
        self.report_url = report_url
        self.notify_on_success = notify_on_success
        self.secrets = [s for s in secrets if s]
        self.timeout = timeout

    def should_notify(self, report: AggregatedReport) -> bool:
        return not report.passed or bool(report.errors) or self.notify_on_success

    def build_payload(self, report: AggregatedReport) -> dict:
        findings = report.all_findings()
        critical_count = sum(1 for f in findings if f.severity == Severity.CRITICAL)
        status = "PASSED" if report.passed else "FAILED"
        failed = ", ".join(
            c.value for c, r in report.categories.items() if r.verdict == Verdict.FAIL
        ) or "none"
        color = GREEN if report.passed else RED

        # 1. Slack-specific payload (if 'slack' is in URL)
        if "slack.com" in self.webhook_url:
            text = (
                f"*scangate: {self.project_name}*\n"
                f"Status: {status}\n"
                f"Findings: {len(findings)} ({critical_count} Critical)\n"
                f"Failed categories: {failed}\n"
                f"Infrastructure errors: {len(report.errors)}"
            )
            if self.report_url:
                text += f"\n<{self.report_url}|Open Report>"
            payload = {"text": text}

        # 2. Generic / Discord / Teams Payload (Embeds)
        else:
            fields = [
                {"name": "Status", "value": status, "inline": True},
                {"name": "Total Findings", "value": str(len(findings)), "inline": True},
                {"name": "Critical Issues", "value": str(critical_count), "inline": True},
                {"name": "Failed Categories", "value": failed},
                {"name": "Errors", "value": str(len(report.errors)), "inline": True},
            ]
            if self.report_url:
                fields.append({"name": "Report", "value": f"[Open Report]({self.report_url})"})
            payload = {
                "username": "scangate",
                "embeds": [
                    {
                        "title": f"Scan Completed: {self.project_name} ({report.run_id})",
                        "color": int(color.replace("#", ""), 16),
                        "fields": fields,
                    }
                ],
            }

        return redact_data(payload, self.secrets)

    def notify(self, report: AggregatedReport) -> None:
        if not self.should_notify(report):
            logger.info("Run passed and notify_on_success is off, skipping webhook.")
            return

        logger.info(f"Sending notification to webhook for {self.project_name}...")
        response = requests.post(self.webhook_url, json=self.build_payload(report), timeout=self.timeout)
        response.raise_for_status()
        logger.info("Notification sent.")


def deliver_report(report: AggregatedReport, notifiers: Iterable) -> dict:
    """
    Hands the frozen report to every notifier.

    Failures are logged and reported back, never raised: a broken
    webhook must not change the pipeline's exit status.
    """
    outcome = {}
    for notifier in notifiers:
        name = getattr(notifier, "name", type(notifier).__name__)
        try:
            notifier.notify(report)
            outcome[name] = True
        except Exception as e:
            logger.error(f"Failed to deliver report via {name}: {e}")
            outcome[name] = False
    return outcome
