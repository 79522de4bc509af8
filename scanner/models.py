import json
from enum import Enum
from typing import Dict, List, Optional, Tuple

import pydantic
from pydantic import ConfigDict


# --- Enums ---

class Severity(str, Enum):
    """
    Shared four-level severity scale.

    Ordered by rank, NOT by string value:
    low < medium < high < critical
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: str) -> "Severity":
        return cls(str(value).strip().lower())


SEVERITY_RANK: Dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class Category(str, Enum):
    SECRET = "secret"
    SAST = "sast"
    DEPENDENCY = "dependency"
    CONTAINER = "container"
    IAC = "iac"
    DAST = "dast"


class Verdict(str, Enum):
    PASS = "pass"
    FAIL = "fail"


# --- Findings ---

class Location(pydantic.BaseModel):
    path: str
    start_line: Optional[int] = None
    end_line: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    def describe(self) -> str:
        if self.start_line is None:
            return self.path
        if self.end_line is None or self.end_line == self.start_line:
            return f"{self.path}:{self.start_line}"
        return f"{self.path}:{self.start_line}-{self.end_line}"


class RawFinding(pydantic.BaseModel):
    """
    Tool-native finding, exactly as an adapter emits it.

    `severity` is the tool's own vocabulary ("ERROR", "WARNING", "3"...)
    and is only mapped onto `Severity` by the aggregator.
    """

    tool: str
    rule_id: str
    severity: str
    location: Location
    message: str
    help_uri: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class Finding(pydantic.BaseModel):
    """
    Normalized, deduplicated finding.
    """

    category: Category
    tools: Tuple[str, ...]
    rule_id: str
    severity: Severity
    location: Location
    description: str
    fingerprint: str
    help_uri: Optional[str] = None

    model_config = ConfigDict(frozen=True)


# --- Task results ---

class TaskResult(pydantic.BaseModel):
    """
    Outcome of a task's final attempt.

    Created exactly once per task by the scheduler.
    """

    task_id: str
    category: Optional[Category]
    tool: str
    status: str
    findings: Tuple[RawFinding, ...] = ()
    duration_seconds: float = 0.0
    attempts: int = 0
    error: Optional[str] = None
    skip_reason: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)


# --- Aggregated report ---

class CategoryReport(pydantic.BaseModel):
    category: Category
    threshold: Severity
    verdict: Verdict
    findings: Tuple[Finding, ...] = ()
    counts: Dict[str, int] = {}

    model_config = ConfigDict(frozen=True)


class ToolSummary(pydantic.BaseModel):
    task_id: str
    category: Optional[Category]
    tool: str
    status: str
    attempts: int
    duration_seconds: float
    finding_count: int
    error: Optional[str] = None
    skip_reason: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)


class ErrorEntry(pydantic.BaseModel):
    task_id: str
    kind: str
    message: str

    model_config = ConfigDict(frozen=True)


TIMING_FIELDS = ("started_at", "finished_at", "duration_seconds")


class AggregatedReport(pydantic.BaseModel):
    """
    Final, immutable run report.

    Everything except the timing fields is a pure function of the
    plan, the config and the task results.
    """

    run_id: str
    started_at: str
    finished_at: str
    duration_seconds: float
    verdict: Verdict
    categories: Dict[Category, CategoryReport]
    tools: Tuple[ToolSummary, ...]
    errors: Tuple[ErrorEntry, ...] = ()

    model_config = ConfigDict(frozen=True)

    @property
    def passed(self) -> bool:
        return self.verdict == Verdict.PASS

    def all_findings(self) -> List[Finding]:
        findings: List[Finding] = []
        for category_report in self.categories.values():
            findings.extend(category_report.findings)
        return findings

    def to_canonical_json(self, *, include_timing: bool = True) -> str:
        exclude = None if include_timing else set(TIMING_FIELDS)
        data = self.model_dump(mode="json", exclude=exclude)
        for tool in data["tools"]:
            if not include_timing:
                tool.pop("duration_seconds", None)
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
