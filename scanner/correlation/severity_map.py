"""
Per-tool severity vocabulary -> shared four-level scale.

The table is data, not logic: it can be replaced or extended from a
JSON file (`SEVERITY_MAP_FILE`) shaped like

    {"semgrep": {"ERROR": "critical"}, "my-tool": {"P1": "high"}}

Entries in the file override the defaults key by key.
"""

import json
from pathlib import Path
from typing import Dict, Mapping, Optional

from scanner.models import Severity
from .exceptions import InvalidSeverityMap, UnmappedSeverity

# Used for tools with no table of their own
GENERIC = "*"

_IDENTITY = {
    "CRITICAL": Severity.CRITICAL,
    "HIGH": Severity.HIGH,
    "MEDIUM": Severity.MEDIUM,
    "LOW": Severity.LOW,
}

DEFAULT_SEVERITY_MAP: Dict[str, Dict[str, Severity]] = {
    GENERIC: dict(_IDENTITY),
    "gitleaks": {"SECRET": Severity.HIGH},
    "semgrep": {
        **_IDENTITY,
        "ERROR": Severity.HIGH,
        "WARNING": Severity.MEDIUM,
        "INFO": Severity.LOW,
    },
    "bandit": {
        "HIGH": Severity.HIGH,
        "MEDIUM": Severity.MEDIUM,
        "LOW": Severity.LOW,
        "UNDEFINED": Severity.LOW,
    },
    "trivy-fs": {**_IDENTITY, "UNKNOWN": Severity.LOW},
    "trivy-image": {**_IDENTITY, "UNKNOWN": Severity.LOW},
    "dependency-check": {
        **_IDENTITY,
        "MODERATE": Severity.MEDIUM,
        "INFO": Severity.LOW,
    },
    "checkov": {**_IDENTITY, "INFO": Severity.LOW},
    # ZAP riskcode: 0 informational .. 3 high
    "zap": {
        "3": Severity.HIGH,
        "2": Severity.MEDIUM,
        "1": Severity.LOW,
        "0": Severity.LOW,
    },
}


class SeverityMapping:
    """
    Immutable lookup table. The aggregator only applies it.
    """

    def __init__(self, table: Optional[Mapping[str, Mapping[str, Severity]]] = None):
        source = DEFAULT_SEVERITY_MAP if table is None else table
        self._table: Dict[str, Dict[str, Severity]] = {
            tool: {str(native).strip().upper(): Severity(sev) for native, sev in entries.items()}
            for tool, entries in source.items()
        }

    def map(self, tool: str, native: str) -> Severity:
        key = str(native).strip().upper()
        entries = self._table.get(tool)
        if entries is None:
            entries = self._table.get(GENERIC, {})
        if key not in entries:
            raise UnmappedSeverity(tool, native)
        return entries[key]

    def table(self) -> Dict[str, Dict[str, str]]:
        return {
            tool: {native: sev.value for native, sev in sorted(entries.items())}
            for tool, entries in sorted(self._table.items())
        }

    def merged(self, overrides: Mapping[str, Mapping[str, str]]) -> "SeverityMapping":
        table: Dict[str, Dict[str, Severity]] = {t: dict(e) for t, e in self._table.items()}
        for tool, entries in overrides.items():
            target = table.setdefault(tool, {})
            for native, sev in entries.items():
                target[str(native).strip().upper()] = Severity.parse(sev)
        return SeverityMapping(table)

    @classmethod
    def from_json_file(cls, path: str) -> "SeverityMapping":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise InvalidSeverityMap(f"Cannot read severity map {path}: {exc}") from exc

        if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
            raise InvalidSeverityMap(
                f"Severity map {path} must be an object of tool -> {{native: severity}}"
            )
        try:
            return cls().merged(data)
        except ValueError as exc:
            raise InvalidSeverityMap(f"Severity map {path}: {exc}") from exc


def load_severity_mapping(path: Optional[str]) -> SeverityMapping:
    if not path:
        return SeverityMapping()
    return SeverityMapping.from_json_file(path)
