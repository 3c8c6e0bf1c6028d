"""
Run History
===========
Append-only JSONL ledger of finished run reports.

Design goals:
- Simple, transparent on-disk format (one JSON object per line)
- File locking so concurrent runs on one host never interleave lines
- Schema validation for predictable downstream parsing

The ledger is bookkeeping only; it does not serialize runs.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from filelock import FileLock, Timeout
from loguru import logger

from src.config import PIPELINE
from src.utils.schema_validation import validate_run_report


@dataclass(frozen=True)
class RunHistoryPaths:
    """Resolved paths for the run history under a state directory."""

    state_dir: Path
    ledger_path: Path
    lock_path: Path
    reports_dir: Path


class RunHistory:
    """Append-only store of run reports.

    The ledger lives at ``<state_dir>/runs.jsonl``; each report is also written
    on its own to ``<state_dir>/runs/<run_id>.json``.
    """

    def __init__(
        self,
        state_dir: str | Path,
        ledger_filename: str = "runs.jsonl",
        lock_timeout_seconds: int = PIPELINE.FILE_LOCK_SECONDS,
    ):
        self.state_dir = Path(state_dir).expanduser().resolve()
        self.ledger_filename = ledger_filename
        self.lock_timeout_seconds = lock_timeout_seconds

    def paths(self) -> RunHistoryPaths:
        ledger_path = self.state_dir / self.ledger_filename
        return RunHistoryPaths(
            state_dir=self.state_dir,
            ledger_path=ledger_path,
            lock_path=ledger_path.with_suffix(ledger_path.suffix + ".lock"),
            reports_dir=self.state_dir / "runs",
        )

    def ensure_exists(self) -> RunHistoryPaths:
        p = self.paths()
        p.state_dir.mkdir(parents=True, exist_ok=True)
        p.reports_dir.mkdir(parents=True, exist_ok=True)
        return p

    def report_path(self, run_id: str) -> Path:
        if not run_id or "/" in run_id or "\\" in run_id or ".." in run_id:
            raise ValueError(f"Invalid run_id: {run_id!r}")
        return self.paths().reports_dir / f"{run_id}.json"

    def append(self, report: Dict[str, Any]) -> Path:
        """Validate and record a finished run report.

        Returns:
            Path of the standalone report file.
        """
        validate_run_report(report)
        p = self.ensure_exists()

        report_path = self.report_path(str(report["run_id"]))
        report_path.write_text(json.dumps(report, indent=2, sort_keys=True, ensure_ascii=False) + "\n", encoding="utf-8")

        line = json.dumps(report, ensure_ascii=False, sort_keys=True)
        try:
            with FileLock(p.lock_path, timeout=self.lock_timeout_seconds):
                with open(p.ledger_path, "a", encoding="utf-8") as f:
                    f.write(line)
                    f.write("\n")
                    f.flush()
        except Timeout as e:
            raise TimeoutError(
                f"Timed out acquiring run history lock {p.lock_path} after {self.lock_timeout_seconds}s"
            ) from e

        return report_path

    def iter_runs(self) -> Iterator[Dict[str, Any]]:
        """Iterate run reports in the order they finished; malformed lines are skipped."""
        p = self.paths()
        if not p.ledger_path.exists():
            return

        with open(p.ledger_path, "r", encoding="utf-8") as f:
            for idx, raw_line in enumerate(f, start=1):
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                    if not isinstance(obj, dict):
                        raise ValueError("record must be an object")
                    validate_run_report(obj)
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning("Skipping malformed run record at {} line {}: {}", p.ledger_path, idx, e)
                    continue
                yield obj

    def last_run(self) -> Optional[Dict[str, Any]]:
        last: Optional[Dict[str, Any]] = None
        for record in self.iter_runs():
            last = record
        return last
