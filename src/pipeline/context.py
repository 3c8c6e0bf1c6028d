"""Pipeline run context.

This module defines a small, serializable state object for one pipeline run.
Its payload is the run report written at the end of every run.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from src.pipeline.steps import FailureKind, Step, StepResult, StepStatus
from src.pipeline.triggers import TriggerEvent, TriggerKind


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunContext:
    """Serializable state passed through the pipeline steps."""

    checkout_dir: Path
    trigger: TriggerEvent = field(default_factory=lambda: TriggerEvent(kind=TriggerKind.WORKFLOW_DISPATCH))
    run_id: str = field(default_factory=lambda: uuid4().hex)
    created_at: str = field(default_factory=_utc_now_iso)
    finished_at: Optional[str] = None

    success: bool = True
    errors: list[str] = field(default_factory=list)
    failed_step: Optional[Step] = None
    failure_kind: Optional[FailureKind] = None

    checkpoints: Dict[str, str] = field(default_factory=dict)
    step_results: Dict[Step, StepResult] = field(default_factory=dict)

    changes_present: Optional[bool] = None
    commit_sha: Optional[str] = None
    artifact: Optional[Dict[str, Any]] = None

    def mark_checkpoint(self, name: str) -> None:
        if not name.strip():
            return
        self.checkpoints[name] = _utc_now_iso()

    def record_step(self, result: StepResult) -> None:
        self.step_results[result.step] = result
        if result.status is StepStatus.FAILED:
            self.success = False
            self.failed_step = result.step
            self.failure_kind = result.failure_kind or FailureKind.INTERNAL
            if result.message:
                self.errors.append(f"{result.step.value}: {result.message}")

    def step_status(self, step: Step) -> Optional[StepStatus]:
        result = self.step_results.get(step)
        return result.status if result else None

    def finish(self) -> None:
        self.finished_at = _utc_now_iso()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "schema_version": "1.0",
            "run_id": self.run_id,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
            "trigger": self.trigger.to_dict(),
            "checkout_dir": str(self.checkout_dir),
            "success": self.success,
            "errors": list(self.errors),
            "failed_step": self.failed_step.value if self.failed_step else None,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "checkpoints": dict(self.checkpoints),
            "steps": {step.value: result.to_dict() for step, result in self.step_results.items()},
            "changes_present": self.changes_present,
            "commit_sha": self.commit_sha,
            "artifact": dict(self.artifact) if self.artifact is not None else None,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RunContext":
        checkout_dir = Path(str(payload.get("checkout_dir", ""))).expanduser().resolve()
        trigger_data = payload.get("trigger")
        trigger = (
            TriggerEvent.from_dict(trigger_data)
            if isinstance(trigger_data, dict)
            else TriggerEvent(kind=TriggerKind.WORKFLOW_DISPATCH)
        )
        ctx = cls(checkout_dir=checkout_dir, trigger=trigger)

        run_id = payload.get("run_id")
        if isinstance(run_id, str) and run_id:
            ctx.run_id = run_id

        created_at = payload.get("created_at")
        if isinstance(created_at, str) and created_at:
            ctx.created_at = created_at

        finished_at = payload.get("finished_at")
        if isinstance(finished_at, str) and finished_at:
            ctx.finished_at = finished_at

        ctx.success = bool(payload.get("success", True))

        errors = payload.get("errors")
        if isinstance(errors, list):
            ctx.errors = [str(e) for e in errors]

        failed_step = payload.get("failed_step")
        if isinstance(failed_step, str) and failed_step:
            ctx.failed_step = Step(failed_step)

        failure_kind = payload.get("failure_kind")
        if isinstance(failure_kind, str) and failure_kind:
            ctx.failure_kind = FailureKind(failure_kind)

        checkpoints = payload.get("checkpoints")
        if isinstance(checkpoints, dict):
            ctx.checkpoints = {str(k): str(v) for k, v in checkpoints.items()}

        steps = payload.get("steps")
        if isinstance(steps, dict):
            for v in steps.values():
                if isinstance(v, dict) and v.get("step"):
                    result = StepResult.from_dict(v)
                    ctx.step_results[result.step] = result

        changes = payload.get("changes_present")
        ctx.changes_present = changes if isinstance(changes, bool) else None

        commit_sha = payload.get("commit_sha")
        ctx.commit_sha = commit_sha if isinstance(commit_sha, str) and commit_sha else None

        artifact = payload.get("artifact")
        ctx.artifact = dict(artifact) if isinstance(artifact, dict) else None

        return ctx

    def write_json(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(self.to_payload(), indent=2, sort_keys=True, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )

    @classmethod
    def read_json(cls, path: Path) -> Optional["RunContext"]:
        if not path.exists() or not path.is_file():
            return None

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError):
            return None

        if not isinstance(payload, dict):
            return None

        try:
            return cls.from_payload(payload)
        except (ValueError, KeyError):
            return None
