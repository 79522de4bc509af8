# scanner/tools/registry.py

from typing import Callable, Dict, List, Optional, Sequence

from scanner.models import Category, RawFinding

# runner(task, context) -> raw findings
ToolRunner = Callable[..., Sequence[RawFinding]]

_TOOL_REGISTRY: Dict[str, ToolRunner] = {}
_TOOL_CATEGORIES: Dict[str, Optional[Category]] = {}


def register_tool(
    tool: str,
    runner: ToolRunner,
    *,
    category: Optional[Category],
) -> None:
    """
    Register a tool execution function.

    tool: e.g. "semgrep", "trivy-fs", "build"
    category: scan category, or None for support tasks (build/deploy)
    """
    _TOOL_REGISTRY[tool] = runner
    _TOOL_CATEGORIES[tool] = category


def get_tool(tool: str) -> ToolRunner:
    if tool not in _TOOL_REGISTRY:
        raise KeyError(f"No tool registered: {tool}")
    return _TOOL_REGISTRY[tool]


def has_tool(tool: str) -> bool:
    return tool in _TOOL_REGISTRY


def tool_category(tool: str) -> Optional[Category]:
    return _TOOL_CATEGORIES.get(tool)


def tools_for_category(category: Category) -> List[str]:
    return sorted(
        name for name, cat in _TOOL_CATEGORIES.items() if cat == category
    )
