# engine/services/orchestrator.py

"""
Pipeline orchestration service.

This module is the ONLY entry point for running a pipeline
from the CLI (or any other embedding) into the scangate engine.

Responsibilities:
- Resolve raw inputs into a PipelineConfig
- Build the execution plan
- Run the scheduler to completion
- Aggregate, write reports, notify
- Map the outcome onto an exit code
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from app.services.jira import JiraNotifier
from app.services.notifier import WebhookNotifier, deliver_report
from config.exceptions import InvalidConfig
from config.pipeline import PipelineConfig, resolve_pipeline_config
from config.settings import Settings
from engine.dispatch.thread_dispatch import TaskRunner
from engine.planner.dag_builder import build_plan
from engine.planner.exceptions import PlannerError
from engine.scheduler.context import CancelToken
from engine.scheduler.dag import ExecutionPlan
from engine.scheduler.metrics import SchedulerMetrics
from engine.scheduler.scheduler import ScanScheduler
from engine.scheduler.types import TaskState, UNSUCCESSFUL_STATES
from engine.services.exit_codes import (
    EXIT_GATE_FAILED,
    EXIT_INFRA_ERROR,
    EXIT_INVALID_CONFIG,
    EXIT_PLANNING_ERROR,
    EXIT_SUCCESS,
)
from scanner.correlation.aggregator import ResultAggregator
from scanner.correlation.exceptions import AggregationError, InvalidSeverityMap
from scanner.correlation.severity_map import SeverityMapping, load_severity_mapping
from scanner.models import AggregatedReport, Verdict
from scanner.reporting.exceptions import ReportGenerationError
from scanner.reporting.json_writer import write_json_report
from scanner.reporting.pdf_writer import write_pdf_report
from scanner.reporting.sarif_writer import write_sarif_report
from scanner.result_adapter import run_task
from scanner.tools.utils import get_logger

log = get_logger("engine.orchestrator")


@dataclass(frozen=True)
class RunContext:
    """
    Where and how one invocation runs. Everything here comes from
    the caller (CLI flags), not from pipeline inputs.
    """

    workspace: Path
    output_dir: Optional[Path] = None
    changed_paths: Optional[Sequence[str]] = None
    write_sarif: bool = True
    write_pdf: bool = False
    run_id: Optional[str] = None


@dataclass(frozen=True)
class RunOutcome:
    exit_code: int
    message: str
    config: Optional[PipelineConfig] = None
    plan: Optional[ExecutionPlan] = None
    report: Optional[AggregatedReport] = None
    artifacts: Dict[str, str] = field(default_factory=dict)
    notifications: Dict[str, bool] = field(default_factory=dict)
    metrics: Dict[str, Any] = field(default_factory=dict)
    config_errors: Dict[str, List[str]] = field(default_factory=dict)


def derive_run_id(
    config: PipelineConfig,
    plan: ExecutionPlan,
    changed_paths: Optional[Sequence[str]] = None,
) -> str:
    """
    Default run id: a digest of what the run will do, so reruns on
    unchanged inputs produce identical reports.
    """
    payload = {
        "config": config.model_dump(mode="json"),
        "tasks": [
            [t.task_id, t.tool, sorted(t.dependencies), t.timeout_seconds, t.max_retries]
            for t in plan.tasks
        ],
        "changed_paths": None if changed_paths is None else sorted(changed_paths),
    }
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()
    return f"scan-{digest[:12]}"


def compute_exit_code(report: AggregatedReport, plan: ExecutionPlan) -> int:
    """
    Gate failure wins over infrastructure trouble.
    Best-effort tasks never raise the exit code on their own.
    """
    if report.verdict == Verdict.FAIL:
        return EXIT_GATE_FAILED

    blocking = {task.task_id for task in plan.tasks if not task.best_effort}
    for summary in report.tools:
        if summary.task_id in blocking and TaskState(summary.status) in UNSUCCESSFUL_STATES:
            return EXIT_INFRA_ERROR
    for entry in report.errors:
        if entry.kind == "aggregation" and entry.task_id in blocking:
            return EXIT_INFRA_ERROR

    return EXIT_SUCCESS


class ScanOrchestrator:
    """
    Stateless service object. One instance may run many pipelines.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        runner: Optional[TaskRunner] = None,
        notifiers: Optional[List[Any]] = None,
        severity_map: Optional[SeverityMapping] = None,
    ):
        if settings is None:
            raise ValueError("settings must not be None")

        self._settings = settings
        self._runner = runner or run_task
        self._notifiers = notifiers
        self._severity_map = severity_map

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    def plan(
        self,
        raw_config: Mapping[str, Any],
        changed_paths: Optional[Sequence[str]] = None,
    ) -> Tuple[PipelineConfig, ExecutionPlan]:
        """
        Resolve and plan without running anything.

        Raises:
            InvalidConfig
            PlannerError
        """
        config = resolve_pipeline_config(raw_config)
        return config, build_plan(config, changed_paths=changed_paths)

    def run(
        self,
        raw_config: Mapping[str, Any],
        context: RunContext,
        cancel_token: Optional[CancelToken] = None,
    ) -> RunOutcome:
        try:
            config = resolve_pipeline_config(raw_config)
            severity_map = self._severity_map or load_severity_mapping(self._settings.SEVERITY_MAP_FILE)
        except InvalidConfig as exc:
            log.error(str(exc))
            return RunOutcome(
                exit_code=EXIT_INVALID_CONFIG,
                message=str(exc),
                config_errors=exc.errors,
            )
        except InvalidSeverityMap as exc:
            log.error(str(exc))
            return RunOutcome(exit_code=EXIT_INVALID_CONFIG, message=str(exc))

        try:
            plan = build_plan(config, changed_paths=context.changed_paths)
        except PlannerError as exc:
            log.error(f"Planning failed: {exc}")
            return RunOutcome(exit_code=EXIT_PLANNING_ERROR, message=str(exc), config=config)

        run_id = context.run_id or derive_run_id(config, plan, context.changed_paths)
        log.info(f"Run {run_id}: {len(plan)} task(s), max {config.max_parallel_tasks} in parallel")

        metrics = SchedulerMetrics()
        started_at = datetime.now(timezone.utc)
        scheduler = ScanScheduler(
            plan,
            self._runner,
            max_parallel=config.max_parallel_tasks,
            grace_period=config.grace_period_seconds,
            backoff_base=config.retry_backoff_seconds,
            workspace=context.workspace,
            credentials=self._settings.scanner_credentials(),
            options=self._task_options(config),
            env=config.runtime_versions(),
            metrics=metrics,
        )
        results = scheduler.run(cancel_token)
        finished_at = datetime.now(timezone.utc)

        try:
            report = ResultAggregator(plan, config, severity_map).aggregate(
                results,
                started_at=started_at,
                finished_at=finished_at,
                run_id=run_id,
            )
        except AggregationError as exc:
            log.error(f"Aggregation failed: {exc}")
            return RunOutcome(
                exit_code=EXIT_INFRA_ERROR,
                message=str(exc),
                config=config,
                plan=plan,
                metrics=metrics.snapshot(),
            )

        artifacts = self._write_reports(report, context)
        notifications = deliver_report(report, self._build_notifiers(config))

        exit_code = compute_exit_code(report, plan)
        message = {
            EXIT_SUCCESS: "Security gate passed",
            EXIT_GATE_FAILED: "Security gate failed",
            EXIT_INFRA_ERROR: "Security gate passed, but blocking tasks did not complete",
        }[exit_code]
        log.info(f"Run {run_id} finished: {message} (exit {exit_code})")

        return RunOutcome(
            exit_code=exit_code,
            message=message,
            config=config,
            plan=plan,
            report=report,
            artifacts=artifacts,
            notifications=notifications,
            metrics=metrics.snapshot(),
        )

    # ------------------------------------------------------------------
    # INTERNAL HELPERS
    # ------------------------------------------------------------------

    def _task_options(self, config: PipelineConfig) -> Dict[str, str]:
        options = {
            "container_image": config.container_image,
            "dast_target_url": config.dast_target_url,
            "build_command": config.build_command,
            "deploy_command": config.deploy_command,
            "zap_image": self._settings.ZAP_IMAGE,
        }
        return {key: value for key, value in options.items() if value}

    def _write_reports(self, report: AggregatedReport, context: RunContext) -> Dict[str, str]:
        """
        Writer failures are logged; the gate result stands either way.
        """
        out_dir = Path(context.output_dir or self._settings.OUTPUT_DIR)
        writers = [("json", write_json_report, "scangate-report.json")]
        if context.write_sarif:
            writers.append(("sarif", write_sarif_report, "scangate-report.sarif"))
        if context.write_pdf:
            writers.append(("pdf", write_pdf_report, "scangate-report.pdf"))

        artifacts: Dict[str, str] = {}
        for kind, writer, filename in writers:
            try:
                artifacts[kind] = writer(report, str(out_dir / filename))
            except ReportGenerationError as exc:
                log.error(f"Could not write {kind} report: {exc}")
        return artifacts

    def _build_notifiers(self, config: PipelineConfig) -> List[Any]:
        if self._notifiers is not None:
            return list(self._notifiers)

        s = self._settings
        notifiers: List[Any] = []
        if s.NOTIFICATION_WEBHOOK_URL:
            notifiers.append(
                WebhookNotifier(
                    s.NOTIFICATION_WEBHOOK_URL,
                    report_url=s.REPORT_BASE_URL,
                    notify_on_success=config.notify_on_success,
                    secrets=s.scanner_credentials().values(),
                )
            )
        if config.create_tickets:
            if s.JIRA_ENABLED:
                notifiers.append(
                    JiraNotifier(s.JIRA_SERVER, s.JIRA_USERNAME, s.JIRA_API_TOKEN, s.JIRA_PROJECT_KEY)
                )
            else:
                log.warning("create_tickets is set but Jira credentials are missing; no tickets")
        return notifiers
