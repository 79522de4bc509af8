# engine/planner/exceptions.py

from typing import Sequence


class PlannerError(Exception):
    """Base class for planning errors"""


class CyclicPlan(PlannerError):
    def __init__(self, members: Sequence[str]):
        self.members = list(members)
        super().__init__(f"Dependency cycle between: {', '.join(self.members)}")


class UnsatisfiableDependency(PlannerError):
    def __init__(self, task: str, dependency: str):
        self.task = task
        self.dependency = dependency
        super().__init__(
            f"Task '{task}' requires '{dependency}', which is disabled "
            f"and cannot be substituted"
        )
