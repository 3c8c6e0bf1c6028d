"""
Command Execution
=================
Run an external command with a timeout, captured output and no stdin.

On timeout the whole process group is killed so that nothing the command
spawned outlives the run.
"""

from __future__ import annotations

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from loguru import logger

from src.utils.subprocess_text import redact, redact_command, tail_text, to_text


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    command: List[str]
    returncode: Optional[int]
    stdout: str
    stderr: str
    duration_s: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0

    def to_dict(self, max_chars: int = 4000) -> Dict[str, Any]:
        return {
            "command": list(self.command),
            "returncode": self.returncode,
            "timed_out": self.timed_out,
            "duration_s": round(self.duration_s, 3),
            "stdout_tail": tail_text(self.stdout, max_chars),
            "stderr_tail": tail_text(self.stderr, max_chars),
        }


def _kill_group(proc: subprocess.Popen) -> None:
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    proc.kill()


def run_command(
    command: Sequence[str],
    *,
    cwd: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout_seconds: Optional[float] = None,
    secrets: Iterable[Optional[str]] = (),
) -> CommandResult:
    """Execute a command and return its result; never raises on non-zero exit.

    ``secrets`` are masked in the recorded command and output.

    Raises:
        FileNotFoundError: When the executable does not exist.
    """
    secret_list = [s for s in secrets if s]
    shown = redact_command(command, secret_list)
    logger.debug("Running {} (cwd={}, timeout={})", " ".join(shown), cwd, timeout_seconds)

    started = time.perf_counter()
    proc = subprocess.Popen(
        list(command),
        cwd=str(cwd) if cwd else None,
        env=dict(env) if env is not None else None,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        close_fds=True,
        start_new_session=True,
    )

    timed_out = False
    try:
        raw_out, raw_err = proc.communicate(timeout=timeout_seconds)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_group(proc)
        raw_out, raw_err = proc.communicate()

    duration = time.perf_counter() - started
    stdout = redact(to_text(raw_out), secret_list)
    stderr = redact(to_text(raw_err), secret_list)

    if timed_out:
        if stderr:
            stderr = stderr.rstrip("\n") + "\n"
        stderr += f"Execution timed out after {timeout_seconds:.1f} seconds"
        logger.warning("Command timed out after {:.1f}s: {}", duration, " ".join(shown))

    return CommandResult(
        command=shown,
        returncode=None if timed_out else int(proc.returncode),
        stdout=stdout,
        stderr=stderr,
        duration_s=duration,
        timed_out=timed_out,
    )
