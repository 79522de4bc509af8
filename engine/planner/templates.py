# engine/planner/templates.py

"""
Fixed category relationships the planner derives the DAG from.

Templates are declared in execution-preference order; that order
becomes the plan's declaration order.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from scanner.models import Category


@dataclass(frozen=True)
class Dependency:
    """
    Edge from a template to something it needs.

    hard: the dependent cannot run without `target` (no substitution).
    soft: if `target` is disabled the dependent is re-pointed to the
          nearest enabled ancestors of `target`.
    """

    target: str
    hard: bool = True


@dataclass(frozen=True)
class TaskTemplate:
    name: str
    category: Optional[Category]
    depends_on: Tuple[Dependency, ...] = ()
    change_globs: Tuple[str, ...] = ()

    @property
    def is_support(self) -> bool:
        return self.category is None


DEPENDENCY_MANIFESTS = (
    "requirements*.txt",
    "pyproject.toml",
    "poetry.lock",
    "Pipfile",
    "Pipfile.lock",
    "setup.py",
    "setup.cfg",
    "package.json",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "go.mod",
    "go.sum",
    "pom.xml",
    "build.gradle*",
    "Gemfile",
    "Gemfile.lock",
    "Cargo.toml",
    "Cargo.lock",
)

CONTAINER_FILES = (
    "Dockerfile*",
    "*.dockerfile",
    ".dockerignore",
) + DEPENDENCY_MANIFESTS

IAC_FILES = (
    "*.tf",
    "*.tfvars",
    "*.hcl",
    "Dockerfile*",
    "k8s/*",
    "kubernetes/*",
    "helm/*",
    "charts/*",
    "cloudformation/*",
    "*.template.json",
    "*.template.yaml",
)


DEFAULT_TEMPLATES: Tuple[TaskTemplate, ...] = (
    TaskTemplate("build", None),
    TaskTemplate("secret", Category.SECRET),
    TaskTemplate("sast", Category.SAST),
    TaskTemplate("dependency", Category.DEPENDENCY, change_globs=DEPENDENCY_MANIFESTS),
    TaskTemplate("iac", Category.IAC, change_globs=IAC_FILES),
    TaskTemplate(
        "container",
        Category.CONTAINER,
        depends_on=(Dependency("build", hard=True),),
        change_globs=CONTAINER_FILES,
    ),
    TaskTemplate("deploy", None, depends_on=(Dependency("build", hard=False),)),
    TaskTemplate("dast", Category.DAST, depends_on=(Dependency("deploy", hard=True),)),
)


def index_templates(templates: Tuple[TaskTemplate, ...]) -> Dict[str, TaskTemplate]:
    indexed: Dict[str, TaskTemplate] = {}
    for template in templates:
        if template.name in indexed:
            raise ValueError(f"Duplicate template: {template.name}")
        indexed[template.name] = template
    return indexed
