"""
Environment Provisioning
========================
Resolve the interpreter the collector runs under and install its declared
dependency into it.
"""

from __future__ import annotations

import re
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from src.utils.commands import CommandResult, run_command
from src.utils.subprocess_env import build_minimal_subprocess_env


_VERSION_RE = re.compile(r"^\d+(?:\.\d+){0,2}$")
_REPORTED_VERSION_RE = re.compile(r"Python\s+(?P<version>\d+\.\d+(?:\.\d+)?)")


class ProvisioningError(RuntimeError):
    """Raised when the interpreter or the dependency cannot be provisioned."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details = dict(details or {})


@dataclass(frozen=True)
class Interpreter:
    """A resolved Python interpreter."""

    executable: str
    version: str

    def to_dict(self) -> Dict[str, str]:
        return {"executable": self.executable, "version": self.version}


def version_matches(requested: str, actual: str) -> bool:
    """True when ``actual`` satisfies the ``requested`` version prefix.

    "3.11" matches "3.11.9"; "3" matches any 3.x; "3.1" does not match "3.11.0".
    """
    want = requested.strip().split(".")
    have = actual.strip().split(".")
    return len(have) >= len(want) and have[: len(want)] == want


def _candidates(version: str) -> List[str]:
    out: List[str] = []
    for name in (f"python{version}", f"python{version.split('.')[0]}", "python"):
        path = shutil.which(name)
        if path and path not in out:
            out.append(path)
    if sys.executable and sys.executable not in out:
        out.append(sys.executable)
    return out


def _report_version(executable: str, timeout_seconds: Optional[float]) -> Optional[str]:
    try:
        result = run_command(
            [executable, "--version"],
            env=build_minimal_subprocess_env(),
            timeout_seconds=timeout_seconds,
        )
    except OSError as e:
        logger.debug("Interpreter {} not runnable: {}", executable, e)
        return None
    if not result.ok:
        return None
    m = _REPORTED_VERSION_RE.search(result.stdout + " " + result.stderr)
    return m.group("version") if m else None


def resolve_interpreter(version: str, *, timeout_seconds: Optional[float] = None) -> Interpreter:
    """Find an interpreter whose reported version matches ``version``.

    Candidates are ``pythonX.Y``, ``pythonX`` and ``python`` on PATH, then the
    running interpreter.

    Raises:
        ValueError: When the version string is malformed.
        ProvisioningError: When no candidate reports a matching version.
    """
    if not version or not _VERSION_RE.match(version.strip()):
        raise ValueError(f"Invalid interpreter version: {version!r}")

    tried: List[Dict[str, Optional[str]]] = []
    for executable in _candidates(version):
        reported = _report_version(executable, timeout_seconds)
        tried.append({"executable": executable, "version": reported})
        if reported and version_matches(version, reported):
            logger.info("Using Python {} at {}", reported, executable)
            return Interpreter(executable=str(Path(executable)), version=reported)

    raise ProvisioningError(
        f"Python {version} is not available",
        details={"requested": version, "candidates": tried},
    )


def install_dependency(
    interpreter: Interpreter,
    dependency: str,
    *,
    cwd: Optional[Path] = None,
    timeout_seconds: Optional[float] = None,
) -> List[CommandResult]:
    """Upgrade pip, then install the declared dependency.

    Raises:
        ProvisioningError: When either pip invocation fails.
    """
    spec = (dependency or "").strip()
    if not spec or spec.startswith("-"):
        raise ValueError(f"Invalid dependency specifier: {dependency!r}")

    env = build_minimal_subprocess_env(extra={"PIP_DISABLE_PIP_VERSION_CHECK": "1"})
    commands = [
        [interpreter.executable, "-m", "pip", "install", "--upgrade", "pip"],
        [interpreter.executable, "-m", "pip", "install", spec],
    ]

    results: List[CommandResult] = []
    for command in commands:
        result = run_command(command, cwd=cwd, env=env, timeout_seconds=timeout_seconds)
        results.append(result)
        if not result.ok:
            reason = "timed out" if result.timed_out else f"exited with {result.returncode}"
            raise ProvisioningError(
                f"pip install {reason}",
                details={"commands": [r.to_dict() for r in results]},
            )
        logger.info("{} ok in {:.1f}s", " ".join(command[1:]), result.duration_s)
    return results
