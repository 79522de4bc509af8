from fnmatch import fnmatch
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from config.pipeline import PipelineConfig
from engine.planner.exceptions import CyclicPlan, PlannerError, UnsatisfiableDependency
from engine.planner.templates import DEFAULT_TEMPLATES, TaskTemplate, index_templates
from engine.scheduler.dag import ExecutionPlan, ScanTask
from scanner.models import Category
from scanner.tools.utils import get_logger

log = get_logger("engine.planner")

SKIP_FLAGS: Dict[str, str] = {
    "secret": "skip_secret_scan",
    "sast": "skip_sast",
    "dependency": "skip_dependency_scan",
    "container": "skip_container",
    "iac": "skip_iac",
    "build": "skip_build",
    "deploy": "skip_deploy",
}


# -------------------------
# PUBLIC ENTRYPOINT
# -------------------------

def build_plan(
    config: PipelineConfig,
    *,
    changed_paths: Optional[Sequence[str]] = None,
    templates: Tuple[TaskTemplate, ...] = DEFAULT_TEMPLATES,
) -> ExecutionPlan:
    """
    Build the execution DAG for one pipeline run.

    The enabled predicate is evaluated exactly once, here.

    Raises:
        CyclicPlan
        UnsatisfiableDependency
        PlannerError (malformed templates)
    """

    by_name = index_templates(templates)
    _check_template_graph(templates, by_name)

    enabled_scans = [
        t.name for t in templates
        if not t.is_support and _scan_enabled(t, config, changed_paths)
    ]
    candidates = set(enabled_scans) | {
        t.name for t in templates if t.is_support and not _flag(config, t.name)
    }

    # Resolve edges from the enabled scans outwards; support tasks
    # exist only if something enabled reaches them.
    resolved: Dict[str, Set[str]] = {}
    frontier = list(enabled_scans)
    while frontier:
        name = frontier.pop()
        if name in resolved:
            continue
        resolved[name] = _resolve_dependencies(by_name[name], by_name, candidates)
        frontier.extend(sorted(resolved[name] - set(resolved)))

    tasks = _materialize(templates, resolved, config)
    plan = ExecutionPlan(
        tasks=tuple(tasks),
        enabled_categories=tuple(
            t.category for t in templates if t.category is not None and t.name in resolved
        ),
    )

    # fixed templates cannot produce a cycle here, but custom ones might
    plan.topological_order()

    log.info(
        f"Planned {len(plan)} task(s): {', '.join(plan.task_ids) or 'none'}"
    )
    return plan


def topological_sort(
    graph: Mapping[str, Iterable[str]],
    order: Optional[Sequence[str]] = None,
) -> List[str]:
    """
    Kahn's algorithm over `node -> dependencies`.

    Ties are broken by `order` (declaration order), so the result is
    deterministic. Raises CyclicPlan naming every node left on a cycle.
    """
    order = list(order) if order is not None else sorted(graph)
    rank = {node: i for i, node in enumerate(order)}

    indegree: Dict[str, int] = {}
    children: Dict[str, List[str]] = {node: [] for node in graph}
    for node, deps in graph.items():
        deps = set(deps)
        for dep in deps:
            if dep not in graph:
                raise PlannerError(f"'{node}' depends on unknown task '{dep}'")
            children[dep].append(node)
        indegree[node] = len(deps)

    ready = sorted((n for n, d in indegree.items() if d == 0), key=rank.get)
    result: List[str] = []
    while ready:
        node = ready.pop(0)
        result.append(node)
        for child in children[node]:
            indegree[child] -= 1
            if indegree[child] == 0:
                ready.append(child)
        ready.sort(key=rank.get)

    if len(result) != len(graph):
        members = sorted((n for n, d in indegree.items() if d > 0), key=rank.get)
        raise CyclicPlan(members)

    return result


# -------------------------
# ENABLED PREDICATE
# -------------------------

def _flag(config: PipelineConfig, name: str) -> bool:
    field = SKIP_FLAGS.get(name)
    return bool(field and getattr(config, field))


def _scan_enabled(
    template: TaskTemplate,
    config: PipelineConfig,
    changed_paths: Optional[Sequence[str]],
) -> bool:
    if template.category == Category.DAST and not config.enable_dast:
        return False
    if _flag(config, template.name):
        return False
    if config.changed_files_only and template.change_globs and changed_paths is not None:
        if not any(_matches(path, template.change_globs) for path in changed_paths):
            log.info(f"No relevant changes for {template.name}, leaving it out")
            return False
    return True


def _matches(path: str, patterns: Iterable[str]) -> bool:
    path = path.replace("\\", "/")
    if path.startswith("./"):
        path = path[2:]
    basename = path.rsplit("/", 1)[-1]
    for pattern in patterns:
        if fnmatch(path, pattern) or fnmatch(basename, pattern) or fnmatch(path, f"*/{pattern}"):
            return True
    return False


# -------------------------
# EDGE RESOLUTION
# -------------------------

def _resolve_dependencies(
    template: TaskTemplate,
    by_name: Mapping[str, TaskTemplate],
    enabled: Set[str],
) -> Set[str]:
    """
    Map declared edges onto enabled templates.

    A disabled soft target is replaced by its own (resolved) ancestors.
    A disabled hard target has no substitute.
    """
    resolved: Set[str] = set()
    for edge in template.depends_on:
        if edge.target in enabled:
            resolved.add(edge.target)
        elif edge.hard:
            raise UnsatisfiableDependency(template.name, edge.target)
        else:
            resolved |= _resolve_dependencies(by_name[edge.target], by_name, enabled)
    return resolved


def _check_template_graph(
    templates: Tuple[TaskTemplate, ...],
    by_name: Mapping[str, TaskTemplate],
) -> None:
    graph = {}
    for template in templates:
        for edge in template.depends_on:
            if edge.target not in by_name:
                raise PlannerError(
                    f"Template '{template.name}' depends on unknown template '{edge.target}'"
                )
        graph[template.name] = [edge.target for edge in template.depends_on]
    topological_sort(graph, order=[t.name for t in templates])


# -------------------------
# TASK CREATION
# -------------------------

def _materialize(
    templates: Tuple[TaskTemplate, ...],
    resolved: Mapping[str, Set[str]],
    config: PipelineConfig,
) -> List[ScanTask]:
    ids: Dict[str, List[str]] = {}
    for template in templates:
        if template.name not in resolved:
            continue
        if template.is_support:
            ids[template.name] = [template.name]
        else:
            ids[template.name] = [
                f"{template.category.value}:{tool}"
                for tool in config.tools_for(template.category)
            ]

    tasks: List[ScanTask] = []
    for template in templates:
        if template.name not in resolved:
            continue

        dependencies = frozenset(
            task_id
            for dep in resolved[template.name]
            for task_id in ids[dep]
        )

        if template.is_support:
            tasks.append(
                ScanTask(
                    task_id=template.name,
                    category=None,
                    tool=template.name,
                    dependencies=dependencies,
                    timeout_seconds=config.task_timeout_seconds,
                    max_retries=0,
                    idempotent=False,
                    best_effort=config.is_best_effort(template.name),
                    declaration_index=len(tasks),
                )
            )
            continue

        timeout = (
            config.dast_timeout_seconds
            if template.category == Category.DAST
            else config.task_timeout_seconds
        )
        for task_id, tool in zip(ids[template.name], config.tools_for(template.category)):
            tasks.append(
                ScanTask(
                    task_id=task_id,
                    category=template.category,
                    tool=tool,
                    dependencies=dependencies,
                    timeout_seconds=timeout,
                    max_retries=config.max_retries,
                    idempotent=True,
                    best_effort=config.is_best_effort(template.category.value),
                    declaration_index=len(tasks),
                )
            )

    return tasks
