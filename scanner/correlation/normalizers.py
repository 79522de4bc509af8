from scanner.models import Category, Finding, Location, RawFinding
from .fingerprint import compute_fingerprint, normalize_path
from .severity_map import SeverityMapping


class Normalizer:
    """
    Converts RawFinding (tool vocabulary) into Finding (shared scale).

    Raises UnmappedSeverity when the tool's severity has no mapping.
    """

    def __init__(self, mapping: SeverityMapping):
        self.mapping = mapping

    def normalize(self, raw: RawFinding, category: Category) -> Finding:
        severity = self.mapping.map(raw.tool, raw.severity)

        start = raw.location.start_line
        end = raw.location.end_line
        if start is not None and end is not None and end < start:
            start, end = end, start

        location = Location(
            path=normalize_path(raw.location.path),
            start_line=start,
            end_line=end,
        )

        return Finding(
            category=category,
            tools=(raw.tool,),
            rule_id=raw.rule_id,
            severity=severity,
            location=location,
            description=" ".join(raw.message.split()),
            fingerprint=compute_fingerprint(category, raw.rule_id, location, raw.message),
            help_uri=raw.help_uri,
        )
