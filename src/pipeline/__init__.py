"""IPTV update pipeline.

A filesystem-first runner that takes one repository checkout through the
seven update steps and records a run report for each run.
"""

from .context import RunContext
from .runner import run_pipeline
from .steps import FailureKind, Step, StepResult, StepStatus
from .triggers import DailySchedule, TriggerEvent, TriggerKind, accepts

__all__ = [
    "DailySchedule",
    "FailureKind",
    "RunContext",
    "Step",
    "StepResult",
    "StepStatus",
    "TriggerEvent",
    "TriggerKind",
    "accepts",
    "run_pipeline",
]
