"""Pipeline steps and the failure taxonomy.

Steps always run in the order given by ``Step.ordered()``. A step either
completes, is skipped (only commit-and-push, when no changes were detected),
or fails; a failure ends the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Step(Enum):
    CHECKOUT = "checkout"
    SETUP_INTERPRETER = "setup_interpreter"
    INSTALL_DEPENDENCIES = "install_dependencies"
    RUN_COLLECTOR = "run_collector"
    DETECT_CHANGES = "detect_changes"
    COMMIT_AND_PUSH = "commit_and_push"
    PUBLISH_ARTIFACT = "publish_artifact"

    @classmethod
    def ordered(cls) -> Iterable["Step"]:
        return (
            cls.CHECKOUT,
            cls.SETUP_INTERPRETER,
            cls.INSTALL_DEPENDENCIES,
            cls.RUN_COLLECTOR,
            cls.DETECT_CHANGES,
            cls.COMMIT_AND_PUSH,
            cls.PUBLISH_ARTIFACT,
        )


class StepStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class FailureKind(str, Enum):
    PROVISIONING = "provisioning"
    COLLECTOR = "collector"
    PUSH_CONFLICT = "push_conflict"
    TIMEOUT = "timeout"
    GIT = "git"
    ARTIFACT = "artifact"
    INTERNAL = "internal"


# Failure kind reported when a step fails for a reason it did not classify.
DEFAULT_FAILURE_KIND: Dict[Step, FailureKind] = {
    Step.CHECKOUT: FailureKind.PROVISIONING,
    Step.SETUP_INTERPRETER: FailureKind.PROVISIONING,
    Step.INSTALL_DEPENDENCIES: FailureKind.PROVISIONING,
    Step.RUN_COLLECTOR: FailureKind.COLLECTOR,
    Step.DETECT_CHANGES: FailureKind.GIT,
    Step.COMMIT_AND_PUSH: FailureKind.GIT,
    Step.PUBLISH_ARTIFACT: FailureKind.ARTIFACT,
}


class StepFailed(RuntimeError):
    """Raised by a step handler to end the run."""

    def __init__(
        self,
        message: str,
        *,
        kind: Optional[FailureKind] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.details = dict(details or {})


class PipelineTimeout(StepFailed):
    """Raised when the run's wall-clock budget is exhausted."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, kind=FailureKind.TIMEOUT, details=details)


@dataclass
class StepResult:
    """Outcome of one executed step."""

    step: Step
    status: StepStatus
    started_at: str = field(default_factory=_utc_now_iso)
    finished_at: Optional[str] = None
    duration_s: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)
    failure_kind: Optional[FailureKind] = None
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is not StepStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step.value,
            "status": self.status.value,
            "success": self.success,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_s": round(self.duration_s, 3),
            "details": dict(self.details),
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepResult":
        kind = data.get("failure_kind")
        return cls(
            step=Step(data["step"]),
            status=StepStatus(data.get("status", StepStatus.FAILED.value)),
            started_at=str(data.get("started_at") or _utc_now_iso()),
            finished_at=data.get("finished_at"),
            duration_s=float(data.get("duration_s") or 0.0),
            details=dict(data.get("details") or {}),
            failure_kind=FailureKind(kind) if kind else None,
            message=data.get("message"),
        )
