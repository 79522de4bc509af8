"""
Config Resolver.

Turns the raw key/value inputs of a pipeline invocation
(strings and booleans, CI-style) into an immutable PipelineConfig.

All validation errors are collected and raised together as
InvalidConfig. No side effects.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

import pydantic
from pydantic import ConfigDict, Field

import scanner.tools  # noqa: F401  (registers all tool adapters)
from scanner.models import Category, Severity
from scanner.tools.registry import has_tool, tool_category
from config.exceptions import InvalidConfig


VERSION_PATTERN = r"^\d+(\.(\d+|x)){0,2}$"

SUPPORT_TASKS = ("build", "deploy")

THRESHOLD_FIELDS: Dict[Category, str] = {
    Category.SECRET: "secret_severity_threshold",
    Category.SAST: "sast_severity_threshold",
    Category.DEPENDENCY: "dependency_severity_threshold",
    Category.CONTAINER: "container_severity_threshold",
    Category.IAC: "iac_severity_threshold",
    Category.DAST: "dast_severity_threshold",
}

TOOL_FIELDS: Dict[Category, str] = {
    Category.SECRET: "secret_tools",
    Category.SAST: "sast_tools",
    Category.DEPENDENCY: "dependency_tools",
    Category.CONTAINER: "container_tools",
    Category.IAC: "iac_tools",
    Category.DAST: "dast_tools",
}


def _split_list(value: Any) -> Any:
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    return value


class PipelineConfig(pydantic.BaseModel):
    """
    Validated, typed execution configuration.

    Created once per run and never mutated.
    """

    # --- Runtime versions ---
    python_version: str = Field("3.12", pattern=VERSION_PATTERN)
    node_version: str = Field("20", pattern=VERSION_PATTERN)
    java_version: str = Field("17", pattern=VERSION_PATTERN)
    go_version: str = Field("1.22", pattern=VERSION_PATTERN)

    # --- Severity thresholds ---
    secret_severity_threshold: Severity = Severity.HIGH
    sast_severity_threshold: Severity = Severity.HIGH
    dependency_severity_threshold: Severity = Severity.HIGH
    container_severity_threshold: Severity = Severity.CRITICAL
    iac_severity_threshold: Severity = Severity.HIGH
    dast_severity_threshold: Severity = Severity.HIGH

    # --- Skip flags ---
    skip_secret_scan: bool = False
    skip_sast: bool = False
    skip_dependency_scan: bool = False
    skip_container: bool = False
    skip_iac: bool = False
    skip_build: bool = False
    skip_deploy: bool = False

    # --- Feature flags ---
    enable_dast: bool = False
    changed_files_only: bool = False
    notify_on_success: bool = False
    create_tickets: bool = False

    # --- Tools per category ---
    secret_tools: Tuple[str, ...] = ("gitleaks",)
    sast_tools: Tuple[str, ...] = ("semgrep",)
    dependency_tools: Tuple[str, ...] = ("trivy-fs",)
    container_tools: Tuple[str, ...] = ("trivy-image",)
    iac_tools: Tuple[str, ...] = ("checkov",)
    dast_tools: Tuple[str, ...] = ("zap",)

    # --- Execution knobs ---
    max_parallel_tasks: int = Field(4, ge=1, le=64)
    task_timeout_seconds: float = Field(900, gt=0)
    dast_timeout_seconds: float = Field(1800, gt=0)
    grace_period_seconds: float = Field(10, ge=0)
    max_retries: int = Field(1, ge=0, le=5)
    retry_backoff_seconds: float = Field(2.0, ge=0)
    best_effort_tasks: Tuple[str, ...] = ("dast",)

    # --- Targets ---
    build_command: Optional[str] = None
    deploy_command: Optional[str] = None
    container_image: str = "app:latest"
    dast_target_url: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @pydantic.field_validator(
        "python_version", "node_version", "java_version", "go_version",
        mode="before",
    )
    @classmethod
    def _coerce_version(cls, v: Any) -> Any:
        # YAML/JSON inputs like 3.12 arrive as numbers
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @pydantic.field_validator(*THRESHOLD_FIELDS.values(), mode="before")
    @classmethod
    def _lower_threshold(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @pydantic.field_validator(
        "skip_secret_scan", "skip_sast", "skip_dependency_scan", "skip_container",
        "skip_iac", "skip_build", "skip_deploy", "enable_dast",
        "changed_files_only", "notify_on_success", "create_tickets",
        mode="before",
    )
    @classmethod
    def _lower_flag(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @pydantic.field_validator(*TOOL_FIELDS.values(), mode="before")
    @classmethod
    def _split_tools(cls, v: Any) -> Any:
        return _split_list(v)

    @pydantic.field_validator(*TOOL_FIELDS.values())
    @classmethod
    def _check_tools(cls, v: Tuple[str, ...], info: pydantic.ValidationInfo) -> Tuple[str, ...]:
        category = next(c for c, name in TOOL_FIELDS.items() if name == info.field_name)
        if not v:
            raise ValueError("at least one tool is required")
        unknown = [
            tool for tool in v
            if not has_tool(tool) or tool_category(tool) != category
        ]
        if unknown:
            raise ValueError(
                f"unknown {category.value} tool(s): {', '.join(unknown)}"
            )
        # keep first occurrence order, drop duplicates
        return tuple(dict.fromkeys(v))

    @pydantic.field_validator("best_effort_tasks", mode="before")
    @classmethod
    def _split_best_effort(cls, v: Any) -> Any:
        return _split_list(v)

    @pydantic.field_validator("best_effort_tasks")
    @classmethod
    def _check_best_effort(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        allowed = {c.value for c in Category} | set(SUPPORT_TASKS)
        unknown = [name for name in v if name not in allowed]
        if unknown:
            raise ValueError(f"unknown task name(s): {', '.join(unknown)}")
        return tuple(dict.fromkeys(v))

    # --- Accessors ---

    def threshold_for(self, category: Category) -> Severity:
        return getattr(self, THRESHOLD_FIELDS[category])

    def tools_for(self, category: Category) -> Tuple[str, ...]:
        return getattr(self, TOOL_FIELDS[category])

    def is_best_effort(self, name: str) -> bool:
        return name in self.best_effort_tasks

    def runtime_versions(self) -> Dict[str, str]:
        return {
            "PYTHON_VERSION": self.python_version,
            "NODE_VERSION": self.node_version,
            "JAVA_VERSION": self.java_version,
            "GO_VERSION": self.go_version,
        }


def normalize_key(key: str) -> str:
    return str(key).strip().lower().replace("-", "_")


def resolve_pipeline_config(raw: Mapping[str, Any]) -> PipelineConfig:
    """
    Resolve raw key/value inputs into a PipelineConfig.

    Raises:
        InvalidConfig listing every offending key.
    """

    values: Dict[str, Any] = {}
    errors: Dict[str, List[str]] = {}

    for key, value in raw.items():
        name = normalize_key(key)
        # CI engines pass unset optional inputs as empty strings
        if isinstance(value, str) and value.strip() == "":
            continue
        if name in values:
            errors.setdefault(name, []).append("given more than once")
            continue
        values[name] = value

    try:
        config = PipelineConfig.model_validate(values)
    except pydantic.ValidationError as exc:
        for err in exc.errors():
            key = str(err["loc"][0]) if err["loc"] else "config"
            errors.setdefault(key, []).append(_clean_message(err["msg"]))
        # Re-validate without the broken keys so cross-field
        # problems are reported in the same pass.
        config = PipelineConfig.model_validate(
            {k: v for k, v in values.items() if k not in errors}
        )

    for key, message in _cross_field_errors(config):
        if key not in errors:
            errors.setdefault(key, []).append(message)

    if errors:
        raise InvalidConfig(errors)

    return config


def _cross_field_errors(config: PipelineConfig) -> List[Tuple[str, str]]:
    problems = []
    if config.enable_dast and not config.dast_target_url:
        problems.append(("dast_target_url", "required when enable_dast is true"))
    return problems


def _clean_message(msg: str) -> str:
    # pydantic prefixes custom ValueErrors with "Value error, "
    prefix = "Value error, "
    if msg.startswith(prefix):
        return msg[len(prefix):]
    return msg
