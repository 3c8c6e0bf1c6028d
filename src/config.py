"""
Centralized Configuration
=========================
Centralized configuration values and constants for the IPTV auto-update pipeline.

This module provides:
- Wall-clock and per-command timeout configuration
- Collector script and output file names
- Git bot identity and commit message format
- Artifact name and retention window
- Trigger policy (daily schedule and push branches)

Every value can be overridden through an ``IPTV_*`` environment variable.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple


def _env_list(name: str, default: str) -> Tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class PipelineConfig:
    """Run-level configuration."""

    # Whole-run wall-clock budget
    TIMEOUT_MINUTES: int = int(os.getenv("IPTV_TIMEOUT_MINUTES", "30"))

    # Interpreter provisioned for the collector
    PYTHON_VERSION: str = os.getenv("IPTV_PYTHON_VERSION", "3.11")

    # The one declared collector dependency
    DEPENDENCY: str = os.getenv("IPTV_DEPENDENCY", "requests")

    # Where run reports and the run history ledger live
    STATE_DIR: str = os.getenv("IPTV_STATE_DIR", ".iptv-pipeline")

    # File lock acquisition
    FILE_LOCK_SECONDS: int = int(os.getenv("IPTV_FILE_LOCK_SECONDS", "30"))


@dataclass(frozen=True)
class CollectorConfig:
    """External collector script configuration."""

    SCRIPT: str = os.getenv("IPTV_COLLECTOR_SCRIPT", "iptv.py")

    OUTPUT_FILES: Tuple[str, ...] = field(
        default_factory=lambda: _env_list(
            "IPTV_OUTPUT_FILES", "iptv.txt,iptv.m3u,discovered_servers.txt"
        )
    )


@dataclass(frozen=True)
class GitConfig:
    """Git identity used for automated commits."""

    BOT_NAME: str = os.getenv("IPTV_GIT_BOT_NAME", "github-actions[bot]")
    BOT_EMAIL: str = os.getenv(
        "IPTV_GIT_BOT_EMAIL", "github-actions[bot]@users.noreply.github.com"
    )
    COMMIT_PREFIX: str = os.getenv("IPTV_COMMIT_PREFIX", "🤖 Auto-update IPTV channels")
    REMOTE: str = os.getenv("IPTV_GIT_REMOTE", "origin")

    # Build output left in the checkout by installing the runner itself; never staged
    STAGE_EXCLUDES: Tuple[str, ...] = field(
        default_factory=lambda: _env_list(
            "IPTV_STAGE_EXCLUDES", "build/**,**/*.egg-info/**,**/__pycache__/**"
        )
    )


@dataclass(frozen=True)
class ArtifactConfig:
    """Build artifact configuration."""

    NAME: str = os.getenv("IPTV_ARTIFACT_NAME", "iptv-files")
    RETENTION_DAYS: int = int(os.getenv("IPTV_ARTIFACT_RETENTION_DAYS", "7"))
    DIR: str = os.getenv("IPTV_ARTIFACT_DIR", ".iptv-pipeline/artifacts")


@dataclass(frozen=True)
class TriggerConfig:
    """Trigger policy."""

    # Daily schedule, UTC, as HH:MM
    SCHEDULE_UTC: str = os.getenv("IPTV_SCHEDULE_UTC", "00:00")

    PUSH_BRANCHES: Tuple[str, ...] = field(
        default_factory=lambda: _env_list("IPTV_PUSH_BRANCHES", "main,master")
    )


# Global singleton instances
PIPELINE = PipelineConfig()
COLLECTOR = CollectorConfig()
GIT = GitConfig()
ARTIFACTS = ArtifactConfig()
TRIGGERS = TriggerConfig()


@dataclass(frozen=True)
class PipelineSettings:
    """Per-run settings assembled from the config singletons.

    The CLI builds one of these and overrides individual fields from flags;
    tests construct it directly.
    """

    checkout_dir: Path
    source: Optional[str] = None
    revision: Optional[str] = None
    branch: Optional[str] = None
    token: Optional[str] = None

    timeout_seconds: float = PIPELINE.TIMEOUT_MINUTES * 60
    python_version: str = PIPELINE.PYTHON_VERSION
    dependency: Optional[str] = PIPELINE.DEPENDENCY
    state_dir: Optional[Path] = None

    collector_script: str = COLLECTOR.SCRIPT
    output_files: Tuple[str, ...] = COLLECTOR.OUTPUT_FILES

    bot_name: str = GIT.BOT_NAME
    bot_email: str = GIT.BOT_EMAIL
    commit_prefix: str = GIT.COMMIT_PREFIX
    remote: str = GIT.REMOTE
    stage_excludes: Tuple[str, ...] = GIT.STAGE_EXCLUDES

    artifact_name: str = ARTIFACTS.NAME
    artifact_retention_days: int = ARTIFACTS.RETENTION_DAYS
    artifact_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "checkout_dir", Path(self.checkout_dir).expanduser().resolve())
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.artifact_retention_days < 1:
            raise ValueError("artifact_retention_days must be >= 1")
        if not self.output_files:
            raise ValueError("output_files must not be empty")
        for name in self.output_files:
            if "/" in name or "\\" in name or name in {".", ".."}:
                raise ValueError(f"Output file must be a bare file name: {name!r}")

    @property
    def resolved_state_dir(self) -> Path:
        if self.state_dir is not None:
            return Path(self.state_dir).expanduser().resolve()
        return (self.checkout_dir.parent / PIPELINE.STATE_DIR).resolve()

    @property
    def resolved_artifact_dir(self) -> Path:
        if self.artifact_dir is not None:
            return Path(self.artifact_dir).expanduser().resolve()
        return (self.checkout_dir.parent / ARTIFACTS.DIR).resolve()

    def with_overrides(self, **changes) -> "PipelineSettings":
        clean = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **clean)


def get_git_token() -> Optional[str]:
    """Return the write-scoped token supplied by the execution environment."""
    for key in ("IPTV_GIT_TOKEN", "GITHUB_TOKEN", "GH_TOKEN"):
        value = os.getenv(key)
        if value:
            return value
    return None
