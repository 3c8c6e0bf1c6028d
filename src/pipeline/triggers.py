"""Trigger events and the policy deciding which of them start a run.

Three kinds are supported: the daily schedule, a manual dispatch and a push.
Pushes only count on the configured branches.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from src.config import TRIGGERS


class TriggerKind(str, Enum):
    SCHEDULE = "schedule"
    WORKFLOW_DISPATCH = "workflow_dispatch"
    PUSH = "push"

    @classmethod
    def parse(cls, value: str) -> "TriggerKind":
        normalized = (value or "").strip().lower().replace("-", "_")
        if normalized == "manual":
            normalized = cls.WORKFLOW_DISPATCH.value
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unsupported trigger: {value!r}") from None


def branch_from_ref(ref: Optional[str]) -> Optional[str]:
    """``refs/heads/main`` -> ``main``; tags and empty refs -> None."""
    if not ref:
        return None
    if ref.startswith("refs/heads/"):
        return ref[len("refs/heads/"):] or None
    if ref.startswith("refs/"):
        return None
    return ref


@dataclass(frozen=True)
class TriggerEvent:
    """What started a run."""

    kind: TriggerKind
    ref: Optional[str] = None
    revision: Optional[str] = None

    @property
    def branch(self) -> Optional[str]:
        return branch_from_ref(self.ref)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "ref": self.ref, "revision": self.revision}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerEvent":
        return cls(
            kind=TriggerKind.parse(str(data.get("kind", ""))),
            ref=data.get("ref"),
            revision=data.get("revision"),
        )


def accepts(event: TriggerEvent, push_branches: Optional[Iterable[str]] = None) -> bool:
    """Whether ``event`` should start a run."""
    if event.kind in (TriggerKind.SCHEDULE, TriggerKind.WORKFLOW_DISPATCH):
        return True
    branches = set(push_branches if push_branches is not None else TRIGGERS.PUSH_BRANCHES)
    branch = event.branch
    return branch is not None and branch in branches


_HHMM_RE = re.compile(r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})$")


@dataclass(frozen=True)
class DailySchedule:
    """One fixed UTC time per day."""

    hour: int = 0
    minute: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23:
            raise ValueError(f"hour out of range: {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ValueError(f"minute out of range: {self.minute}")

    @classmethod
    def parse(cls, value: str) -> "DailySchedule":
        m = _HHMM_RE.match((value or "").strip())
        if not m:
            raise ValueError(f"Schedule must be HH:MM (UTC), got {value!r}")
        return cls(hour=int(m.group("hour")), minute=int(m.group("minute")))

    @classmethod
    def default(cls) -> "DailySchedule":
        return cls.parse(TRIGGERS.SCHEDULE_UTC)

    @property
    def cron(self) -> str:
        return f"{self.minute} {self.hour} * * *"

    def next_run_after(self, now: Optional[datetime] = None) -> datetime:
        """First scheduled time strictly after ``now`` (UTC)."""
        current = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        candidate = current.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= current:
            candidate += timedelta(days=1)
        return candidate
