from __future__ import annotations

import sys
from unittest.mock import patch

import pytest

from conftest import CURRENT_PYTHON
from src.environment.provision import (
    Interpreter,
    ProvisioningError,
    install_dependency,
    resolve_interpreter,
    version_matches,
)
from src.utils.commands import CommandResult


def _result(command, returncode=0, stderr=""):
    return CommandResult(command=list(command), returncode=returncode, stdout="", stderr=stderr, duration_s=0.01)


@pytest.mark.unit
@pytest.mark.parametrize(
    "requested,actual,expected",
    [
        ("3.11", "3.11.9", True),
        ("3", "3.12.1", True),
        ("3.11.9", "3.11.9", True),
        ("3.1", "3.11.0", False),
        ("3.11", "3.12.0", False),
        ("3.11.2", "3.11", False),
    ],
)
def test_version_matches(requested: str, actual: str, expected: bool) -> None:
    assert version_matches(requested, actual) is expected


@pytest.mark.unit
def test_resolve_current_interpreter() -> None:
    interpreter = resolve_interpreter(CURRENT_PYTHON, timeout_seconds=30)
    assert version_matches(CURRENT_PYTHON, interpreter.version)
    assert interpreter.to_dict()["executable"] == interpreter.executable


@pytest.mark.unit
@pytest.mark.parametrize("bad", ["", "three", "3.x", "3.11.2.1", "-3"])
def test_resolve_interpreter_rejects_malformed_version(bad: str) -> None:
    with pytest.raises(ValueError):
        resolve_interpreter(bad)


@pytest.mark.unit
def test_resolve_interpreter_reports_candidates_when_missing() -> None:
    with patch("src.environment.provision._candidates", return_value=[sys.executable]):
        with pytest.raises(ProvisioningError) as exc_info:
            resolve_interpreter("2.1", timeout_seconds=30)

    tried = exc_info.value.details["candidates"]
    assert tried[0]["executable"] == sys.executable
    assert tried[0]["version"].startswith(CURRENT_PYTHON)


@pytest.mark.unit
def test_resolve_interpreter_skips_unrunnable_candidates(tmp_path) -> None:
    ghost = str(tmp_path / "python-ghost")
    with patch("src.environment.provision._candidates", return_value=[ghost, sys.executable]):
        interpreter = resolve_interpreter(CURRENT_PYTHON, timeout_seconds=30)
    assert interpreter.executable == sys.executable


@pytest.mark.unit
def test_install_dependency_upgrades_pip_then_installs() -> None:
    interpreter = Interpreter(executable="/opt/python/bin/python3", version="3.11.9")
    with patch("src.environment.provision.run_command", side_effect=lambda cmd, **kw: _result(cmd)) as run:
        results = install_dependency(interpreter, "requests", timeout_seconds=60)

    assert len(results) == 2
    first, second = (c.args[0] for c in run.call_args_list)
    assert first == ["/opt/python/bin/python3", "-m", "pip", "install", "--upgrade", "pip"]
    assert second == ["/opt/python/bin/python3", "-m", "pip", "install", "requests"]
    assert run.call_args_list[1].kwargs["env"]["PIP_DISABLE_PIP_VERSION_CHECK"] == "1"


@pytest.mark.unit
def test_install_dependency_failure_raises_with_details() -> None:
    interpreter = Interpreter(executable=sys.executable, version=CURRENT_PYTHON)

    def fake(cmd, **kwargs):
        return _result(cmd, returncode=1 if cmd[-1] == "requests" else 0, stderr="No matching distribution")

    with patch("src.environment.provision.run_command", side_effect=fake):
        with pytest.raises(ProvisioningError, match="exited with 1") as exc_info:
            install_dependency(interpreter, "requests")

    commands = exc_info.value.details["commands"]
    assert len(commands) == 2
    assert "No matching distribution" in commands[-1]["stderr_tail"]


@pytest.mark.unit
def test_install_dependency_timeout_is_reported() -> None:
    interpreter = Interpreter(executable=sys.executable, version=CURRENT_PYTHON)
    timed_out = CommandResult(command=["pip"], returncode=None, stdout="", stderr="", duration_s=5.0, timed_out=True)

    with patch("src.environment.provision.run_command", return_value=timed_out):
        with pytest.raises(ProvisioningError, match="timed out"):
            install_dependency(interpreter, "requests", timeout_seconds=5)


@pytest.mark.unit
@pytest.mark.parametrize("spec", ["", "   ", "--index-url=http://evil"])
def test_install_dependency_rejects_bad_specifiers(spec: str) -> None:
    interpreter = Interpreter(executable=sys.executable, version=CURRENT_PYTHON)
    with pytest.raises(ValueError):
        install_dependency(interpreter, spec)
