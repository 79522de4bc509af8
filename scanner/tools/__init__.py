# Importing the adapter modules registers every tool.
from . import container, dast_zap, iac, sast, sca, secrets, support  # noqa: F401

from .registry import get_tool, has_tool, register_tool, tool_category, tools_for_category

__all__ = [
    "get_tool",
    "has_tool",
    "register_tool",
    "tool_category",
    "tools_for_category",
]
