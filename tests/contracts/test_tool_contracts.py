import inspect
from unittest.mock import patch

import pytest

from conftest import make_task
from engine.scheduler.context import CancelToken, TaskContext
from engine.scheduler.exceptions import InfrastructureError
from scanner.models import Category
from scanner.tools.registry import get_tool, tool_category, tools_for_category
from tests.contracts.bootstrap_tools import bootstrap_tool_registry

EXPECTED_TOOLS = {
    "gitleaks": Category.SECRET,
    "semgrep": Category.SAST,
    "bandit": Category.SAST,
    "trivy-fs": Category.DEPENDENCY,
    "dependency-check": Category.DEPENDENCY,
    "trivy-image": Category.CONTAINER,
    "checkov": Category.IAC,
    "zap": Category.DAST,
    "build": None,
    "deploy": None,
}

SCANNERS = [name for name, category in EXPECTED_TOOLS.items() if category is not None]


@pytest.mark.contract
def test_all_tools_register_with_their_category():
    modules = bootstrap_tool_registry()

    assert "support" in modules
    for tool, category in EXPECTED_TOOLS.items():
        runner = get_tool(tool)
        assert callable(runner)
        assert tool_category(tool) == category


@pytest.mark.contract
def test_every_category_has_a_scanner():
    bootstrap_tool_registry()

    for category in Category:
        assert tools_for_category(category), f"no tool for {category.value}"


@pytest.mark.contract
@pytest.mark.parametrize("tool", list(EXPECTED_TOOLS))
def test_runner_signature_is_task_and_context(tool):
    bootstrap_tool_registry()

    params = list(inspect.signature(get_tool(tool)).parameters)
    assert params[:2] == ["task", "context"]


@pytest.mark.contract
@pytest.mark.parametrize("tool", SCANNERS)
def test_missing_binary_is_infrastructure_error(tool, tmp_path):
    """
    Tools must raise on a broken environment,
    not return an empty (passing) result.
    """
    bootstrap_tool_registry()
    context = TaskContext(
        workspace=tmp_path,
        scratch_dir=tmp_path,
        cancel=CancelToken(),
        options={"dast_target_url": "https://staging.example.com"},
    )

    with patch("scanner.tools.utils.shutil.which", return_value=None), \
         patch("scanner.tools.utils.subprocess.Popen") as popen:
        with pytest.raises(InfrastructureError):
            get_tool(tool)(make_task(f"x:{tool}", tool=tool), context)

        popen.assert_not_called()
