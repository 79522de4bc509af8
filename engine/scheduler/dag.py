from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from scanner.models import Category


@dataclass(frozen=True, slots=True)
class ScanTask:
    """
    Immutable execution descriptor.

    Describes WHAT the task is.
    Does NOT describe HOW it runs.
    Must NEVER be mutated.
    """

    task_id: str
    category: Optional[Category]
    tool: str
    dependencies: FrozenSet[str]
    timeout_seconds: float
    max_retries: int
    idempotent: bool
    best_effort: bool
    declaration_index: int

    @property
    def is_support_task(self) -> bool:
        return self.category is None


@dataclass(frozen=True)
class ExecutionPlan:
    """
    Ordered, immutable set of ScanTask.

    Built once by the planner. Task order is declaration order.
    """

    tasks: Tuple[ScanTask, ...]
    enabled_categories: Tuple[Category, ...]

    def __post_init__(self):
        seen = set()
        for task in self.tasks:
            if task.task_id in seen:
                raise ValueError(f"Duplicate task_id: {task.task_id}")
            seen.add(task.task_id)

    def __len__(self) -> int:
        return len(self.tasks)

    def __iter__(self):
        return iter(self.tasks)

    def get(self, task_id: str) -> ScanTask:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        raise KeyError(task_id)

    @property
    def task_ids(self) -> List[str]:
        return [t.task_id for t in self.tasks]

    def tasks_for(self, category: Category) -> List[ScanTask]:
        return [t for t in self.tasks if t.category == category]

    def children(self) -> Dict[str, List[str]]:
        edges: Dict[str, List[str]] = {t.task_id: [] for t in self.tasks}
        for task in self.tasks:
            for dep in sorted(task.dependencies):
                edges[dep].append(task.task_id)
        return edges

    def topological_order(self) -> List[str]:
        from engine.planner.dag_builder import topological_sort

        return topological_sort(
            {t.task_id: t.dependencies for t in self.tasks},
            order=self.task_ids,
        )
