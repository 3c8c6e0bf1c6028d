"""
Collector Runner
================
Execute the external collector script from the checkout root and describe
the well-known files it leaves behind.

The collector is opaque: it is run with no arguments and no stdin, and only
its exit code and output files are observed.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from src.environment.provision import Interpreter
from src.utils.commands import CommandResult, run_command
from src.utils.subprocess_env import build_minimal_subprocess_env
from src.utils.validation import resolve_output_file, validate_path


class CollectorError(RuntimeError):
    """Raised when the collector is missing, fails or times out."""

    def __init__(self, message: str, *, result: Optional[CommandResult] = None) -> None:
        super().__init__(message)
        self.result = result

    def to_details(self) -> Dict[str, Any]:
        return self.result.to_dict() if self.result is not None else {}


@dataclass(frozen=True)
class OutputFile:
    """Facts about one well-known output file after the collector ran."""

    name: str
    present: bool
    size_bytes: int = 0
    sha256: Optional[str] = None
    line_count: int = 0
    playlist_entries: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "present": self.present,
            "size_bytes": self.size_bytes,
            "sha256": self.sha256,
            "line_count": self.line_count,
            "playlist_entries": self.playlist_entries,
        }


@dataclass(frozen=True)
class OutputManifest:
    files: List[OutputFile]

    @property
    def present(self) -> List[str]:
        return [f.name for f in self.files if f.present]

    @property
    def missing(self) -> List[str]:
        return [f.name for f in self.files if not f.present]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": [f.to_dict() for f in self.files],
            "present": self.present,
            "missing": self.missing,
        }


def describe_output_file(checkout_dir: Path, name: str) -> OutputFile:
    path = resolve_output_file(checkout_dir, name)
    if not path.is_file():
        return OutputFile(name=name, present=False)

    digest = hashlib.sha256()
    size = 0
    lines = 0
    extinf = 0
    with open(path, "rb") as f:
        for line in f:
            digest.update(line)
            size += len(line)
            lines += 1
            if line.lstrip().startswith(b"#EXTINF"):
                extinf += 1

    return OutputFile(
        name=name,
        present=True,
        size_bytes=size,
        sha256=digest.hexdigest(),
        line_count=lines,
        playlist_entries=extinf if path.suffix.lower() in {".m3u", ".m3u8"} else None,
    )


def collect_output_manifest(checkout_dir: Path, names: Sequence[str]) -> OutputManifest:
    """Describe each well-known output file; missing files are reported, not errors."""
    return OutputManifest(files=[describe_output_file(checkout_dir, name) for name in names])


def run_collector(
    *,
    checkout_dir: Path,
    interpreter: Interpreter,
    script: str = "iptv.py",
    timeout_seconds: Optional[float] = None,
    sanitize_env: bool = True,
) -> CommandResult:
    """Run ``<python> <script>`` from the checkout root.

    Raises:
        CollectorError: When the script is missing, exits non-zero or times out.
    """
    checkout_dir = Path(checkout_dir).resolve()
    script_path = validate_path(checkout_dir / script, base_dir=checkout_dir)
    if not script_path.is_file():
        raise CollectorError(f"Collector script not found: {script}")

    env = build_minimal_subprocess_env(sanitize_env=sanitize_env)
    logger.info("Running collector {} with {}", script, interpreter.executable)

    try:
        result = run_command(
            [interpreter.executable, str(script_path.relative_to(checkout_dir))],
            cwd=checkout_dir,
            env=env,
            timeout_seconds=timeout_seconds,
        )
    except OSError as e:
        raise CollectorError(f"Collector could not be started: {type(e).__name__}: {e}")

    if result.timed_out:
        raise CollectorError(f"Collector timed out after {result.duration_s:.1f}s", result=result)
    if result.returncode != 0:
        raise CollectorError(f"Collector exited with code {result.returncode}", result=result)

    logger.info("Collector finished in {:.1f}s", result.duration_s)
    return result
