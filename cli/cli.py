import argparse
import json
import os
import signal
import sys
from pathlib import Path
from typing import Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from config.exceptions import InvalidConfig
from config.settings import get_settings
from engine.planner.exceptions import PlannerError
from engine.scheduler.context import CancelToken
from engine.services.exit_codes import EXIT_INVALID_CONFIG, EXIT_PLANNING_ERROR, EXIT_SUCCESS
from engine.services.orchestrator import RunContext, ScanOrchestrator
from scanner.reporting.summary import render_summary
from scanner.tools.utils import configure_logging

console = Console()

ENV_PREFIX = "INPUT_"


def print_header():
    console.print(
        Panel.fit(
            Text("scangate :: security scan orchestrator", style="bold cyan"),
            border_style="blue",
        )
    )

# --- Helper Functions ---

def print_error(message, details=None):
    console.print(f"[bold red]Error:[/bold red] {message}")
    if details:
        console.print(Panel(str(details), title="Details", border_style="red"))

def print_success(message):
    console.print(f"[bold green]Success:[/bold green] {message}")


# --- Input collection ---

def _parse_assignment(text: str) -> tuple:
    if "=" not in text:
        raise ValueError(f"expected KEY=VALUE, got '{text}'")
    key, value = text.split("=", 1)
    return key.strip(), value.strip()


def load_inputs_file(path: str) -> Dict[str, object]:
    """
    JSON object, or one KEY=VALUE per line (blank lines and # comments ignored).
    """
    text = Path(path).read_text(encoding="utf-8")
    if path.endswith(".json") or text.lstrip().startswith("{"):
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a JSON object")
        return data

    values: Dict[str, object] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, value = _parse_assignment(line)
        values[key] = value
    return values


def inputs_from_env(environ=None) -> Dict[str, object]:
    """CI-style inputs: INPUT_SKIP_SAST=true -> skip_sast."""
    environ = os.environ if environ is None else environ
    return {
        key[len(ENV_PREFIX):].lower(): value
        for key, value in environ.items()
        if key.startswith(ENV_PREFIX) and len(key) > len(ENV_PREFIX)
    }


def collect_inputs(args, environ=None) -> Dict[str, object]:
    """
    Precedence: --set over --inputs-file over INPUT_* environment.
    """
    raw: Dict[str, object] = dict(inputs_from_env(environ))
    if args.inputs_file:
        raw.update(load_inputs_file(args.inputs_file))
    for assignment in args.set or []:
        key, value = _parse_assignment(assignment)
        raw[key] = value
    return raw


def collect_changed_paths(args) -> Optional[List[str]]:
    paths: List[str] = list(args.changed_path or [])
    if args.changed_paths_file:
        lines = Path(args.changed_paths_file).read_text(encoding="utf-8").splitlines()
        paths.extend(line.strip() for line in lines if line.strip())
    if not paths and not args.changed_paths_file:
        return None
    return paths


# --- Commands ---

def print_config_errors(errors):
    table = Table(title="Invalid pipeline inputs", show_header=True, header_style="bold red")
    table.add_column("Input", style="bold white")
    table.add_column("Problem")
    for key, messages in errors.items():
        table.add_row(key, "; ".join(messages))
    console.print(table)


def handle_plan(args) -> int:
    orchestrator = ScanOrchestrator(get_settings())
    try:
        raw = collect_inputs(args)
        config, plan = orchestrator.plan(raw, changed_paths=collect_changed_paths(args))
    except InvalidConfig as e:
        print_config_errors(e.errors)
        return EXIT_INVALID_CONFIG
    except (OSError, ValueError) as e:
        print_error("Could not read pipeline inputs", str(e))
        return EXIT_INVALID_CONFIG
    except PlannerError as e:
        print_error("Planning failed", str(e))
        return EXIT_PLANNING_ERROR

    if args.json:
        console.print_json(data={
            "enabled_categories": [c.value for c in plan.enabled_categories],
            "tasks": [
                {
                    "task_id": t.task_id,
                    "category": t.category.value if t.category else None,
                    "tool": t.tool,
                    "dependencies": sorted(t.dependencies),
                    "timeout_seconds": t.timeout_seconds,
                    "max_retries": t.max_retries,
                    "best_effort": t.best_effort,
                }
                for t in plan.tasks
            ],
        })
        return EXIT_SUCCESS

    table = Table(title="Execution Plan", show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Task", style="bold white")
    table.add_column("Depends on")
    table.add_column("Timeout", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Threshold")
    table.add_column("Blocking")
    for task in plan.tasks:
        threshold = config.threshold_for(task.category).value if task.category else "-"
        table.add_row(
            str(task.declaration_index),
            task.task_id,
            ", ".join(sorted(task.dependencies)) or "-",
            f"{task.timeout_seconds:g}s",
            str(task.max_retries),
            threshold,
            "no" if task.best_effort else "yes",
        )
    console.print(table)
    return EXIT_SUCCESS


def handle_run(args) -> int:
    settings = get_settings()
    try:
        raw = collect_inputs(args)
        changed_paths = collect_changed_paths(args)
    except (OSError, ValueError) as e:
        print_error("Could not read pipeline inputs", str(e))
        return EXIT_INVALID_CONFIG

    context = RunContext(
        workspace=Path(args.workspace).resolve(),
        output_dir=Path(args.out_dir) if args.out_dir else None,
        changed_paths=changed_paths,
        write_sarif=args.sarif,
        write_pdf=args.pdf,
        run_id=args.run_id,
    )

    cancel_token = CancelToken()

    def _abort(signum, _frame):
        cancel_token.cancel(f"received {signal.Signals(signum).name}")

    previous = {sig: signal.signal(sig, _abort) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        outcome = ScanOrchestrator(settings).run(raw, context, cancel_token)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if outcome.report is None:
        if outcome.config_errors:
            print_config_errors(outcome.config_errors)
        else:
            print_error(outcome.message)
        return outcome.exit_code

    render_summary(outcome.report, console)
    for kind, path in outcome.artifacts.items():
        console.print(f"[dim]{kind.upper()} report: {path}[/dim]")

    if outcome.exit_code == EXIT_SUCCESS:
        print_success(outcome.message)
    else:
        print_error(f"{outcome.message} (exit {outcome.exit_code})")
    return outcome.exit_code


def _add_input_args(parser):
    parser.add_argument("--inputs-file", help="JSON object or KEY=VALUE lines with pipeline inputs")
    parser.add_argument("--set", action="append", metavar="KEY=VALUE", help="Override one pipeline input")
    parser.add_argument("--changed-path", action="append", metavar="PATH", help="Changed file (repeatable)")
    parser.add_argument("--changed-paths-file", help="File listing changed paths, one per line")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="scangate", description="Security scan orchestrator")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--no-banner", action="store_true")

    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser("plan", help="Resolve inputs and print the execution plan")
    _add_input_args(plan_parser)
    plan_parser.add_argument("--json", action="store_true", help="Print the plan as JSON")
    plan_parser.set_defaults(func=handle_plan)

    run_parser = subparsers.add_parser("run", help="Run the pipeline and gate on the results")
    _add_input_args(run_parser)
    run_parser.add_argument("--workspace", default=".", help="Checkout to scan (read-only)")
    run_parser.add_argument("--out-dir", help="Report directory (default: OUTPUT_DIR)")
    run_parser.add_argument("--sarif", action=argparse.BooleanOptionalAction, default=True)
    run_parser.add_argument("--pdf", action="store_true", help="Also write a PDF report")
    run_parser.add_argument("--run-id", help="Run identifier (default: derived from inputs and plan)")
    run_parser.set_defaults(func=handle_run)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level or get_settings().LOG_LEVEL)
    if not args.no_banner:
        print_header()

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
