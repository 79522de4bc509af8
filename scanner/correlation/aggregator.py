from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple, Union

from config.pipeline import PipelineConfig
from engine.scheduler.dag import ExecutionPlan
from engine.scheduler.types import TaskState, UNSUCCESSFUL_STATES
from scanner.models import (
    AggregatedReport,
    Category,
    CategoryReport,
    ErrorEntry,
    Finding,
    Severity,
    TaskResult,
    ToolSummary,
    Verdict,
)
from scanner.tools.utils import get_logger
from .engine import CorrelationEngine
from .exceptions import AggregationError
from .normalizers import Normalizer
from .severity_map import SeverityMapping

log = get_logger("scanner.aggregator")

Timestamp = Union[datetime, str]


class ResultAggregator:
    """
    Turns the terminal TaskResults of one run into the final report.

    Pure: the same plan, thresholds and results always produce the
    same report, apart from the timing fields.
    """

    def __init__(
        self,
        plan: ExecutionPlan,
        config: PipelineConfig,
        severity_map: Optional[SeverityMapping] = None,
    ):
        self.plan = plan
        self.thresholds: Dict[Category, Severity] = {
            category: config.threshold_for(category) for category in Category
        }
        self.normalizer = Normalizer(severity_map or SeverityMapping())

    def aggregate(
        self,
        results: Mapping[str, TaskResult],
        *,
        started_at: Timestamp,
        finished_at: Timestamp,
        run_id: str,
    ) -> AggregatedReport:
        self._check_complete(results)

        per_category: Dict[Category, List[Finding]] = {c: [] for c in self.plan.enabled_categories}
        tools: List[ToolSummary] = []
        errors: List[ErrorEntry] = []

        for task in self.plan.tasks:
            result = results[task.task_id]
            status = TaskState(result.status)
            warnings: List[str] = list(result.warnings)
            normalized: List[Finding] = []

            if status == TaskState.SUCCESS and task.category is not None:
                try:
                    normalized = [
                        self.normalizer.normalize(raw, task.category)
                        for raw in result.findings
                    ]
                except AggregationError as exc:
                    # the whole task is discarded, never half of it
                    normalized = []
                    message = f"findings discarded: {exc}"
                    warnings.append(message)
                    errors.append(ErrorEntry(task_id=task.task_id, kind="aggregation", message=message))
                    log.warning(f"{task.task_id}: {message}")

            if task.category is not None:
                per_category[task.category].extend(normalized)

            if status in UNSUCCESSFUL_STATES:
                errors.append(
                    ErrorEntry(
                        task_id=task.task_id,
                        kind=status.value,
                        message=result.error or status.value,
                    )
                )

            tools.append(
                ToolSummary(
                    task_id=task.task_id,
                    category=task.category,
                    tool=task.tool,
                    status=status.value,
                    attempts=result.attempts,
                    duration_seconds=result.duration_seconds,
                    finding_count=len(normalized),
                    error=result.error,
                    skip_reason=result.skip_reason,
                    warnings=tuple(warnings),
                )
            )

        categories: Dict[Category, CategoryReport] = {}
        for category in self.plan.enabled_categories:
            categories[category] = self._category_report(category, per_category[category])

        verdict = (
            Verdict.PASS
            if all(report.verdict == Verdict.PASS for report in categories.values())
            else Verdict.FAIL
        )

        started, finished, duration = _timing(started_at, finished_at)
        return AggregatedReport(
            run_id=run_id,
            started_at=started,
            finished_at=finished,
            duration_seconds=duration,
            verdict=verdict,
            categories=categories,
            tools=tuple(tools),
            errors=tuple(errors),
        )

    def _category_report(self, category: Category, findings: List[Finding]) -> CategoryReport:
        engine = CorrelationEngine()
        engine.ingest(findings)
        merged = engine.deduplicate()

        threshold = self.thresholds[category]
        failing = [f for f in merged if f.severity >= threshold]
        counts = {sev.value: 0 for sev in sorted(Severity, reverse=True)}
        for finding in merged:
            counts[finding.severity.value] += 1

        if failing:
            log.warning(
                f"{category.value}: {len(failing)} finding(s) at or above {threshold.value}"
            )

        return CategoryReport(
            category=category,
            threshold=threshold,
            verdict=Verdict.FAIL if failing else Verdict.PASS,
            findings=tuple(merged),
            counts=counts,
        )

    def _check_complete(self, results: Mapping[str, TaskResult]) -> None:
        for task in self.plan.tasks:
            result = results.get(task.task_id)
            if result is None:
                raise AggregationError(f"No result for task {task.task_id}")
            if not TaskState(result.status).is_terminal:
                raise AggregationError(
                    f"Task {task.task_id} is not terminal ({result.status})"
                )


def _timing(started_at: Timestamp, finished_at: Timestamp) -> Tuple[str, str, float]:
    if isinstance(started_at, datetime) and isinstance(finished_at, datetime):
        duration = max(0.0, (finished_at - started_at).total_seconds())
        return started_at.isoformat(), finished_at.isoformat(), round(duration, 3)
    return str(started_at), str(finished_at), 0.0
