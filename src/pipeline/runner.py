"""
Pipeline Runner
===============
Runs the seven IPTV update steps in order against one checkout:

checkout -> interpreter setup -> dependency install -> collector ->
change detection -> commit and push (only with changes) -> artifact publish

The first failing step ends the run. Nothing is retried. Every subprocess is
bounded by what is left of the run's wall-clock budget; when the budget runs
out the run fails with kind ``timeout`` and a checkout the runner cloned itself
is reset so nothing partial survives.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from loguru import logger

from src.artifacts.publisher import ArtifactStore
from src.collector.runner import CollectorError, collect_output_manifest, run_collector
from src.config import PipelineSettings
from src.environment.provision import (
    Interpreter,
    ProvisioningError,
    install_dependency,
    resolve_interpreter,
)
from src.pipeline.context import RunContext
from src.pipeline.deadline import Deadline
from src.pipeline.history import RunHistory
from src.pipeline.steps import (
    DEFAULT_FAILURE_KIND,
    FailureKind,
    Step,
    StepFailed,
    StepResult,
    StepStatus,
)
from src.pipeline.triggers import TriggerEvent, TriggerKind
from src.vcs.git import GitCommandError, GitRepository, PushRejectedError


# Budget for the post-timeout reset, which runs after the deadline is gone.
CLEANUP_TIMEOUT_SECONDS = 60.0


def commit_message(prefix: str, when: Optional[datetime] = None) -> str:
    """``<prefix> - YYYY-MM-DD HH:MM`` in UTC."""
    stamp = (when or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return f"{prefix} - {stamp.strftime('%Y-%m-%d %H:%M')}"


@dataclass
class _RunState:
    repo: Optional[GitRepository] = None
    owns_checkout: bool = False
    interpreter: Optional[Interpreter] = None
    branch: Optional[str] = None
    initial_head: Optional[str] = None


class _Run:
    def __init__(
        self,
        settings: PipelineSettings,
        context: RunContext,
        deadline: Deadline,
        now: Optional[datetime],
    ) -> None:
        self.settings = settings
        self.context = context
        self.deadline = deadline
        self.now = now
        self.state = _RunState()

    def _timestamp(self) -> datetime:
        return self.now or datetime.now(timezone.utc)

    def _require_repo(self) -> GitRepository:
        if self.state.repo is None:
            raise StepFailed("No checkout is available to this step", kind=FailureKind.INTERNAL)
        return self.state.repo

    def _require_interpreter(self) -> Interpreter:
        if self.state.interpreter is None:
            raise StepFailed("No interpreter has been provisioned", kind=FailureKind.INTERNAL)
        return self.state.interpreter

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    def execute(self, step: Step, handler: Callable[[], Dict[str, Any]]) -> bool:
        """Run one step handler and record its result; False ends the run."""
        result = StepResult(step=step, status=StepStatus.COMPLETED)
        t0 = time.monotonic()
        logger.info("Step {} starting", step.value)

        try:
            self.deadline.check(step.value)
            result.details = handler() or {}
        except StepFailed as e:
            result.status = StepStatus.FAILED
            result.failure_kind = e.kind or DEFAULT_FAILURE_KIND[step]
            result.message = e.message
            result.details = e.details
        except Exception as e:
            logger.exception("Step {} raised unexpectedly", step.value)
            result.status = StepStatus.FAILED
            result.failure_kind = FailureKind.INTERNAL
            result.message = f"{type(e).__name__}: {e}"

        if result.status is StepStatus.FAILED and self.deadline.expired:
            result.failure_kind = FailureKind.TIMEOUT

        result.duration_s = time.monotonic() - t0
        result.finished_at = datetime.now(timezone.utc).isoformat()
        self.context.record_step(result)

        if result.success:
            self.context.mark_checkpoint(f"{step.value}_complete")
            logger.info("Step {} {} in {:.1f}s", step.value, result.status.value, result.duration_s)
        else:
            logger.error(
                "Step {} failed ({}): {}",
                step.value,
                result.failure_kind.value if result.failure_kind else "unknown",
                result.message,
            )
        return result.success

    def skip(self, step: Step, reason: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self.context.record_step(
            StepResult(
                step=step,
                status=StepStatus.SKIPPED,
                started_at=now,
                finished_at=now,
                details={"reason": reason},
            )
        )
        logger.info("Step {} skipped: {}", step.value, reason)

    # ------------------------------------------------------------------
    # Step handlers
    # ------------------------------------------------------------------

    def checkout(self) -> Dict[str, Any]:
        s = self.settings
        trigger = self.context.trigger
        revision = s.revision or trigger.revision
        branch = s.branch or trigger.branch
        timeout = self.deadline.remaining()

        try:
            if s.source is None:
                repo = GitRepository(path=s.checkout_dir, token=s.token, remote=s.remote)
                if not repo.is_repository():
                    raise StepFailed(
                        f"{s.checkout_dir} is not a git checkout and no source was given",
                        kind=FailureKind.PROVISIONING,
                    )
                if revision:
                    repo.checkout_revision(revision, branch=branch, timeout_seconds=timeout)
            else:
                if s.checkout_dir.exists() and any(s.checkout_dir.iterdir()):
                    raise StepFailed(
                        f"Checkout directory {s.checkout_dir} is not empty",
                        kind=FailureKind.PROVISIONING,
                    )
                repo = GitRepository.clone(
                    s.source,
                    s.checkout_dir,
                    branch=branch,
                    revision=revision,
                    token=s.token,
                    remote=s.remote,
                    timeout_seconds=timeout,
                )
                self.state.owns_checkout = True

            head = repo.head_sha(timeout_seconds=self.deadline.remaining())
            current = repo.current_branch(timeout_seconds=self.deadline.remaining())
        except GitCommandError as e:
            raise StepFailed(str(e), kind=FailureKind.PROVISIONING, details=e.to_details()) from e

        self.state.repo = repo
        self.state.branch = branch
        self.state.initial_head = head
        return {
            "path": str(repo.path),
            "head": head,
            "branch": current,
            "owns_checkout": self.state.owns_checkout,
        }

    def setup_interpreter(self) -> Dict[str, Any]:
        try:
            interpreter = resolve_interpreter(
                self.settings.python_version,
                timeout_seconds=self.deadline.remaining(),
            )
        except ValueError as e:
            raise StepFailed(str(e), kind=FailureKind.PROVISIONING) from e
        except ProvisioningError as e:
            raise StepFailed(str(e), kind=FailureKind.PROVISIONING, details=e.details) from e

        self.state.interpreter = interpreter
        return interpreter.to_dict()

    def install_dependencies(self) -> Dict[str, Any]:
        dependency = self.settings.dependency
        if not dependency:
            return {"dependency": None, "commands": []}

        interpreter = self._require_interpreter()
        try:
            results = install_dependency(
                interpreter,
                dependency,
                cwd=self.settings.checkout_dir,
                timeout_seconds=self.deadline.remaining(),
            )
        except ValueError as e:
            raise StepFailed(str(e), kind=FailureKind.PROVISIONING) from e
        except ProvisioningError as e:
            raise StepFailed(str(e), kind=FailureKind.PROVISIONING, details=e.details) from e

        return {"dependency": dependency, "commands": [r.to_dict(max_chars=1000) for r in results]}

    def run_collector(self) -> Dict[str, Any]:
        interpreter = self._require_interpreter()
        try:
            result = run_collector(
                checkout_dir=self.settings.checkout_dir,
                interpreter=interpreter,
                script=self.settings.collector_script,
                timeout_seconds=self.deadline.remaining(),
            )
        except CollectorError as e:
            raise StepFailed(str(e), kind=FailureKind.COLLECTOR, details=e.to_details()) from e

        manifest = collect_output_manifest(self.settings.checkout_dir, self.settings.output_files)
        if manifest.missing:
            logger.info("Collector did not produce: {}", ", ".join(manifest.missing))
        return {"command": result.to_dict(max_chars=2000), "outputs": manifest.to_dict()}

    def detect_changes(self) -> Dict[str, Any]:
        repo = self._require_repo()
        try:
            repo.stage_all(self.settings.stage_excludes, timeout_seconds=self.deadline.remaining())
            changed = repo.has_staged_changes(timeout_seconds=self.deadline.remaining())
            files = repo.staged_files(timeout_seconds=self.deadline.remaining()) if changed else []
        except GitCommandError as e:
            raise StepFailed(str(e), kind=FailureKind.GIT, details=e.to_details()) from e

        self.context.changes_present = changed
        logger.info("Changes present: {}", changed)
        return {"changes_present": changed, "staged_files": files}

    def _push_branch(self, repo: GitRepository) -> str:
        timeout = self.deadline.remaining()
        branch = self.state.branch or repo.upstream_branch(timeout) or repo.current_branch(timeout)
        if not branch:
            raise StepFailed("HEAD is detached and no branch was given to push to", kind=FailureKind.GIT)
        return branch

    def commit_and_push(self) -> Dict[str, Any]:
        repo = self._require_repo()
        s = self.settings
        message = commit_message(s.commit_prefix, self._timestamp())

        try:
            branch = self._push_branch(repo)
            sha = repo.commit(
                message,
                author_name=s.bot_name,
                author_email=s.bot_email,
                timeout_seconds=self.deadline.remaining(),
            )
            self.context.commit_sha = sha
            logger.info("Committed {} as {}", sha[:12], s.bot_name)
            repo.push(branch, timeout_seconds=self.deadline.remaining())
        except PushRejectedError as e:
            raise StepFailed(str(e), kind=FailureKind.PUSH_CONFLICT, details=e.to_details()) from e
        except GitCommandError as e:
            raise StepFailed(str(e), kind=FailureKind.GIT, details=e.to_details()) from e

        logger.info("Pushed {} to {}/{}", sha[:12], repo.remote, branch)
        return {"commit_sha": sha, "message": message, "branch": branch, "remote": repo.remote}

    def publish_artifact(self) -> Dict[str, Any]:
        s = self.settings
        store = ArtifactStore(s.resolved_artifact_dir)
        when = self._timestamp()

        try:
            pruned = store.prune_expired(now=when)
        except (OSError, TimeoutError) as e:
            logger.warning("Could not prune expired artifacts in {}: {}", store.artifact_dir, e)
            pruned = []

        try:
            record = store.publish(
                checkout_dir=s.checkout_dir,
                names=s.output_files,
                artifact_name=s.artifact_name,
                run_id=self.context.run_id,
                retention_days=s.artifact_retention_days,
                now=when,
            )
        except (OSError, TimeoutError, ValueError) as e:
            raise StepFailed(f"Artifact publish failed: {type(e).__name__}: {e}", kind=FailureKind.ARTIFACT) from e

        payload = record.to_dict()
        self.context.artifact = payload
        return {"artifact": payload, "pruned": [r.run_id for r in pruned]}

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def discard_partial_changes(self) -> None:
        repo = self.state.repo
        if repo is None or not self.state.owns_checkout:
            return
        try:
            repo.discard_changes(self.state.initial_head, timeout_seconds=CLEANUP_TIMEOUT_SECONDS)
            logger.info("Reset {} to {}", repo.path, (self.state.initial_head or "HEAD")[:12])
        except GitCommandError as e:
            logger.warning("Could not reset {} after timeout: {}", repo.path, e)


def run_pipeline(
    settings: PipelineSettings,
    trigger: Optional[TriggerEvent] = None,
    *,
    history: Optional[RunHistory] = None,
    clock: Callable[[], float] = time.monotonic,
    now: Optional[datetime] = None,
) -> RunContext:
    """Run every step once and return the finished run context.

    Args:
        settings: Per-run settings.
        trigger: The event that started the run; manual dispatch when omitted.
        history: Run history to record the report in; defaults to the one
            under ``settings.resolved_state_dir``.
        clock: Monotonic clock backing the wall-clock budget.
        now: Fixed wall-clock time for commit messages and artifact
            timestamps; current UTC time when omitted.

    Returns:
        RunContext whose payload is the run report.
    """
    trigger = trigger or TriggerEvent(kind=TriggerKind.WORKFLOW_DISPATCH)
    context = RunContext(checkout_dir=settings.checkout_dir, trigger=trigger)
    deadline = Deadline(settings.timeout_seconds, clock=clock)
    run = _Run(settings, context, deadline, now)

    logger.info(
        "Run {} started by {} for {} (budget {:.0f}s)",
        context.run_id,
        trigger.kind.value,
        settings.checkout_dir,
        settings.timeout_seconds,
    )
    context.mark_checkpoint("start")

    handlers: Dict[Step, Callable[[], Dict[str, Any]]] = {
        Step.CHECKOUT: run.checkout,
        Step.SETUP_INTERPRETER: run.setup_interpreter,
        Step.INSTALL_DEPENDENCIES: run.install_dependencies,
        Step.RUN_COLLECTOR: run.run_collector,
        Step.DETECT_CHANGES: run.detect_changes,
        Step.COMMIT_AND_PUSH: run.commit_and_push,
        Step.PUBLISH_ARTIFACT: run.publish_artifact,
    }

    for step in Step.ordered():
        if step is Step.COMMIT_AND_PUSH and not context.changes_present:
            run.skip(step, "no changes")
            continue
        if not run.execute(step, handlers[step]):
            break

    if context.failure_kind is FailureKind.TIMEOUT:
        run.discard_partial_changes()

    context.mark_checkpoint("end")
    context.finish()

    if context.success:
        logger.info("Run {} succeeded", context.run_id)
    else:
        logger.error("Run {} failed at {}", context.run_id, context.failed_step.value if context.failed_step else "?")

    ledger = history or RunHistory(settings.resolved_state_dir)
    try:
        ledger.append(context.to_payload())
    except Exception:
        logger.exception("Failed to record run {} in {}", context.run_id, ledger.state_dir)

    return context
