"""Wall-clock budget for a pipeline run."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from src.pipeline.steps import PipelineTimeout


@dataclass
class Deadline:
    """A fixed budget measured from construction.

    Subprocesses receive ``remaining()`` as their timeout so that no single
    command can outlive the run.
    """

    budget_seconds: float
    clock: Callable[[], float] = time.monotonic
    started: float = field(init=False)

    def __post_init__(self) -> None:
        if self.budget_seconds <= 0:
            raise ValueError("budget_seconds must be > 0")
        self.started = self.clock()

    def elapsed(self) -> float:
        return self.clock() - self.started

    def remaining(self) -> float:
        return max(0.0, self.budget_seconds - self.elapsed())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def check(self, what: str) -> None:
        """Raise PipelineTimeout when the budget is gone."""
        if self.expired:
            raise PipelineTimeout(
                f"Run exceeded its {self.budget_seconds:.0f}s budget before {what}",
                details={"elapsed_s": round(self.elapsed(), 3)},
            )
