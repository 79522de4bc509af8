from typing import Dict, Iterable, List

from scanner.models import Finding
from scanner.tools.utils import get_logger

log = get_logger("scanner.correlation")


def finding_sort_key(finding: Finding):
    return (
        -finding.severity.rank,
        finding.location.path,
        finding.location.start_line or 0,
        finding.rule_id,
        finding.fingerprint,
    )


class CorrelationEngine:
    """
    Merges normalized findings of ONE category.

    Findings must be ingested in declaration order; the first
    description seen for a fingerprint wins.
    """

    def __init__(self):
        self.findings: List[Finding] = []

    def ingest(self, findings: Iterable[Finding]) -> None:
        self.findings.extend(findings)

    def deduplicate(self) -> List[Finding]:
        """
        Collapses findings sharing a fingerprint:
        - highest severity wins
        - contributing tools are unioned
        - first description / location / help link are kept
        """
        unique: Dict[str, Finding] = {}
        for f in self.findings:
            current = unique.get(f.fingerprint)
            if current is None:
                unique[f.fingerprint] = f
                continue

            unique[f.fingerprint] = current.model_copy(
                update={
                    "severity": max(current.severity, f.severity),
                    "tools": tuple(sorted(set(current.tools) | set(f.tools))),
                    "help_uri": current.help_uri or f.help_uri,
                }
            )

        before = len(self.findings)
        after = len(unique)
        if before > after:
            log.info(f"Deduplication: Reduced {before} findings to {after}.")

        return sorted(unique.values(), key=finding_sort_key)
