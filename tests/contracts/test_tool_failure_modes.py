import subprocess
import time

import pytest

from engine.scheduler.context import CancelToken
from engine.scheduler.exceptions import (
    InfrastructureError,
    TaskCancelled,
    TaskFailure,
    TaskTimeout,
)
from scanner.tools.utils import line_number, load_json_report, relative_path, run_subprocess


def _proc(returncode, stdout="", stderr=""):
    return subprocess.CompletedProcess(["tool"], returncode, stdout, stderr)


@pytest.mark.contract
def test_unlaunchable_binary_is_infrastructure_error():
    with pytest.raises(InfrastructureError):
        run_subprocess(["scangate-no-such-binary-xyz"])


@pytest.mark.contract
def test_nonzero_exit_is_returned_not_raised():
    proc = run_subprocess(["sh", "-c", "echo oops >&2; exit 3"])

    assert proc.returncode == 3
    assert "oops" in proc.stderr


@pytest.mark.contract
def test_cancel_stops_the_process():
    token = CancelToken()
    token.cancel("pipeline aborted")

    started = time.monotonic()
    with pytest.raises(TaskCancelled):
        run_subprocess(["sleep", "10"], cancel=token)

    assert time.monotonic() - started < 5


@pytest.mark.contract
def test_timeout_stops_the_process():
    started = time.monotonic()
    with pytest.raises(TaskTimeout):
        run_subprocess(["sleep", "10"], timeout=0.3)

    assert time.monotonic() - started < 5


@pytest.mark.contract
def test_missing_report_after_crash_is_failure(tmp_path):
    with pytest.raises(TaskFailure) as exc_info:
        load_json_report(str(tmp_path / "r.json"), _proc(2, stderr="fatal: bad rules"), tool="semgrep")

    assert "fatal: bad rules" in str(exc_info.value)


@pytest.mark.contract
def test_missing_report_after_clean_exit_is_infrastructure_error(tmp_path):
    with pytest.raises(InfrastructureError):
        load_json_report(str(tmp_path / "r.json"), _proc(0), tool="semgrep")


@pytest.mark.contract
def test_garbage_report_is_infrastructure_error(tmp_path):
    report = tmp_path / "r.json"
    report.write_text("<html>not json</html>")

    with pytest.raises(InfrastructureError):
        load_json_report(str(report), _proc(1), tool="semgrep")


def test_relative_path_strips_workspace_and_mounts(tmp_path):
    assert relative_path(f"{tmp_path}/src/app.py", tmp_path) == "src/app.py"
    assert relative_path("/src/lib/util.py", tmp_path) == "lib/util.py"
    assert relative_path("./main.tf", tmp_path) == "main.tf"
    assert relative_path(None, tmp_path) == "."


@pytest.mark.parametrize("value, expected", [(12, 12), ("7", 7), (0, None), (None, None), ("x", None)])
def test_line_number(value, expected):
    assert line_number(value) == expected
