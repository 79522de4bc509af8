import logging
from typing import Any, List, Optional

from jira import JIRA

from scanner.guardrails import redact_text
from scanner.models import AggregatedReport, Finding, Severity

logger = logging.getLogger("scangate.integrations.jira")

# Our severity -> Jira priority names.
# Adjust these names based on your specific Jira project configuration
PRIORITY_MAP = {
    Severity.CRITICAL: "Highest",
    Severity.HIGH: "High",
    Severity.MEDIUM: "Medium",
    Severity.LOW: "Low",
}


def ticket_label(finding: Finding) -> str:
    return f"scangate-{finding.fingerprint[:16]}"


class JiraNotifier:
    """
    Opens one Jira ticket per finding at or above `min_severity`.

    Tickets carry a fingerprint label, so re-running the pipeline on
    the same findings does not open duplicates.
    """

    name = "jira"

    def __init__(
        self,
        server: str,
        username: str,
        api_token: str,
        project_key: str,
        *,
        min_severity: Severity = Severity.HIGH,
        set_priority: bool = False,
        client: Optional[Any] = None,
    ):
        self.server = server
        self.username = username
        self._api_token = api_token
        self.project_key = project_key
        self.min_severity = min_severity
        # not every Jira project exposes the priority field
        self.set_priority = set_priority
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = JIRA(server=self.server, basic_auth=(self.username, self._api_token))
            logger.info("Jira integration enabled.")
        return self._client

    def tickets_for(self, report: AggregatedReport) -> List[Finding]:
        return [f for f in report.all_findings() if f.severity >= self.min_severity]

    def _exists(self, label: str) -> bool:
        jql = f'project = "{self.project_key}" AND labels = "{label}"'
        return bool(self.client.search_issues(jql, maxResults=1))

    def build_fields(self, finding: Finding, report: AggregatedReport) -> dict:
        description = (
            f"*Vulnerability Report*\n\n"
            f"{redact_text(finding.description)}\n\n"
            f"---\n"
            f"*Severity:* {finding.severity.value}\n"
            f"*Category:* {finding.category.value}\n"
            f"*Rule:* {finding.rule_id}\n"
            f"*Location:* {finding.location.describe()}\n"
            f"*Reported by:* {', '.join(finding.tools)}\n"
            f"*Run:* {report.run_id}"
        )
        if finding.help_uri:
            description += f"\n*Reference:* {finding.help_uri}"

        fields = {
            "project": {"key": self.project_key},
            "summary": f"[scangate] {finding.rule_id} in {finding.location.describe()}"[:250],
            "description": description,
            "issuetype": {"name": "Bug"},
            "labels": ["scangate", ticket_label(finding)],
        }
        if self.set_priority:
            fields["priority"] = {"name": PRIORITY_MAP[finding.severity]}
        return fields

    def notify(self, report: AggregatedReport) -> None:
        """
        Creates Jira tickets; a failure on one ticket does not stop the rest.
        """
        created_count = 0
        for finding in self.tickets_for(report):
            label = ticket_label(finding)
            try:
                if self._exists(label):
                    logger.info(f"Ticket for {label} already exists, skipping.")
                    continue
                new_issue = self.client.create_issue(fields=self.build_fields(finding, report))
                logger.info(f"Created Jira ticket: {new_issue.key}")
                created_count += 1
            except Exception as e:
                logger.error(f"Failed to create ticket for '{finding.rule_id}': {e}")

        logger.info(f"Jira: {created_count} ticket(s) created.")
