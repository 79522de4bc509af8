import pytest

from config.pipeline import resolve_pipeline_config
from engine.planner.dag_builder import build_plan, topological_sort
from engine.planner.exceptions import CyclicPlan, PlannerError, UnsatisfiableDependency
from engine.planner.templates import Dependency, TaskTemplate
from scanner.models import Category

DAST_URL = "https://staging.example.com"


def _plan(changed_paths=None, **inputs):
    return build_plan(resolve_pipeline_config(inputs), changed_paths=changed_paths)


def test_default_plan_in_declaration_order():
    plan = _plan()

    assert plan.task_ids == [
        "build",
        "secret:gitleaks",
        "sast:semgrep",
        "dependency:trivy-fs",
        "iac:checkov",
        "container:trivy-image",
    ]
    assert plan.get("container:trivy-image").dependencies == {"build"}
    assert plan.get("sast:semgrep").dependencies == frozenset()
    assert [t.declaration_index for t in plan.tasks] == list(range(len(plan)))
    assert plan.enabled_categories == (
        Category.SECRET,
        Category.SAST,
        Category.DEPENDENCY,
        Category.IAC,
        Category.CONTAINER,
    )


def test_support_tasks_only_exist_when_needed():
    plan = _plan(skip_container="true")

    assert "build" not in plan.task_ids
    assert "deploy" not in plan.task_ids
    assert Category.CONTAINER not in plan.enabled_categories


def test_support_tasks_are_never_retried():
    plan = _plan(max_retries="3")

    build = plan.get("build")
    assert build.category is None
    assert build.max_retries == 0
    assert build.idempotent is False
    assert plan.get("sast:semgrep").max_retries == 3
    assert plan.get("sast:semgrep").idempotent is True


def test_dast_plan_chains_build_deploy_dast():
    plan = _plan(enable_dast="true", dast_target_url=DAST_URL, dast_timeout_seconds="600")

    assert plan.get("deploy").dependencies == {"build"}
    dast = plan.get("dast:zap")
    assert dast.dependencies == {"deploy"}
    assert dast.timeout_seconds == 600
    assert dast.best_effort is True
    assert plan.task_ids.index("deploy") < plan.task_ids.index("dast:zap")


def test_skipped_build_soft_edge_is_repointed():
    plan = _plan(
        enable_dast="true",
        dast_target_url=DAST_URL,
        skip_build="true",
        skip_container="true",
    )

    assert "build" not in plan.task_ids
    assert plan.get("deploy").dependencies == frozenset()
    assert plan.get("dast:zap").dependencies == {"deploy"}


def test_skipped_build_with_container_scan_is_unsatisfiable():
    with pytest.raises(UnsatisfiableDependency) as exc_info:
        _plan(skip_build="true")

    assert exc_info.value.task == "container"
    assert exc_info.value.dependency == "build"


def test_skipped_deploy_with_dast_is_unsatisfiable():
    with pytest.raises(UnsatisfiableDependency) as exc_info:
        _plan(enable_dast="true", dast_target_url=DAST_URL, skip_deploy="true")

    assert exc_info.value.task == "dast"
    assert exc_info.value.dependency == "deploy"


def test_one_task_per_tool():
    plan = _plan(sast_tools="semgrep,bandit", skip_container="true")

    assert plan.tasks_for(Category.SAST) == [plan.get("sast:semgrep"), plan.get("sast:bandit")]


def test_changed_files_only_drops_untouched_categories():
    plan = _plan(changed_paths=["src/app.py"], changed_files_only="true")

    assert plan.task_ids == ["secret:gitleaks", "sast:semgrep"]


def test_changed_manifest_keeps_dependency_and_container_scans():
    plan = _plan(changed_paths=["services/api/requirements.txt"], changed_files_only="true")

    assert "dependency:trivy-fs" in plan.task_ids
    assert "container:trivy-image" in plan.task_ids
    assert "iac:checkov" not in plan.task_ids


def test_changed_files_only_without_change_list_plans_everything():
    assert _plan(changed_files_only="true").task_ids == _plan().task_ids


def test_change_list_ignored_when_flag_off():
    assert _plan(changed_paths=[]).task_ids == _plan().task_ids


def test_cyclic_templates_are_rejected():
    templates = (
        TaskTemplate("secret", Category.SECRET, depends_on=(Dependency("sast"),)),
        TaskTemplate("sast", Category.SAST, depends_on=(Dependency("secret"),)),
    )

    with pytest.raises(CyclicPlan) as exc_info:
        build_plan(resolve_pipeline_config({}), templates=templates)

    assert exc_info.value.members == ["secret", "sast"]


def test_unknown_template_dependency_is_rejected():
    templates = (TaskTemplate("sast", Category.SAST, depends_on=(Dependency("lint"),)),)

    with pytest.raises(PlannerError):
        build_plan(resolve_pipeline_config({}), templates=templates)


def test_topological_sort_breaks_ties_by_declaration_order():
    graph = {"c": [], "a": ["c"], "b": ["c"], "d": ["a", "b"]}

    assert topological_sort(graph, order=["c", "b", "a", "d"]) == ["c", "b", "a", "d"]
    assert topological_sort(graph, order=["c", "a", "b", "d"]) == ["c", "a", "b", "d"]


def test_planning_is_deterministic():
    inputs = {"sast_tools": "bandit,semgrep", "enable_dast": "true", "dast_target_url": DAST_URL}

    assert _plan(**inputs) == _plan(**inputs)
