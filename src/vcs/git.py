"""
Git Operations
==============
Thin wrapper over the ``git`` executable for the operations the pipeline
needs: checkout, staging, staged-diff detection, commit, push and reset.

Every command runs non-interactively with a minimal environment. The write
token is injected into ``https://`` remotes and masked in everything that is
logged or raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

from loguru import logger

from src.utils.commands import CommandResult, run_command
from src.utils.subprocess_env import build_git_env
from src.utils.subprocess_text import redact, tail_text


_REJECTION_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "stale info")


class GitCommandError(RuntimeError):
    """Raised when a git command exits non-zero or times out."""

    def __init__(self, result: CommandResult, message: Optional[str] = None) -> None:
        self.command = list(result.command)
        self.returncode = result.returncode
        self.stdout = result.stdout
        self.stderr = result.stderr
        self.timed_out = result.timed_out
        summary = message or f"git command failed with exit code {result.returncode}"
        super().__init__(f"{summary}: {' '.join(self.command)}\n{tail_text(self.stderr, 2000)}".rstrip())

    def to_details(self) -> Dict[str, object]:
        return {
            "command": self.command,
            "returncode": self.returncode,
            "timed_out": self.timed_out,
            "stderr_tail": tail_text(self.stderr, 2000),
        }


class PushRejectedError(GitCommandError):
    """Raised when the remote refuses the push because it has diverged."""


def authenticated_url(source: str, token: Optional[str]) -> str:
    """Return ``source`` with the token embedded for https remotes.

    Local paths, ssh remotes and URLs that already carry credentials are
    returned unchanged.
    """
    if not token:
        return source
    parts = urlsplit(source)
    if parts.scheme not in ("http", "https") or "@" in parts.netloc:
        return source
    netloc = f"x-access-token:{token}@{parts.netloc}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def is_push_rejection(stderr: str) -> bool:
    lowered = (stderr or "").lower()
    return any(marker in lowered for marker in _REJECTION_MARKERS)


@dataclass
class GitRepository:
    """A git working tree on disk."""

    path: Path
    token: Optional[str] = None
    remote: str = "origin"
    env: Dict[str, str] = field(default_factory=build_git_env)

    def __post_init__(self) -> None:
        self.path = Path(self.path).expanduser().resolve()

    # ------------------------------------------------------------------
    # Command plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        args: Sequence[str],
        *,
        timeout_seconds: Optional[float] = None,
        check: bool = True,
        cwd: Optional[Path] = None,
        extra_env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        result = run_command(
            ["git", *args],
            cwd=cwd or self.path,
            env={**self.env, **extra_env} if extra_env else self.env,
            timeout_seconds=timeout_seconds,
            secrets=[self.token],
        )
        if check and not result.ok:
            message = "git command timed out" if result.timed_out else None
            raise GitCommandError(result, message)
        return result

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    @classmethod
    def clone(
        cls,
        source: str,
        dest: Path,
        *,
        branch: Optional[str] = None,
        revision: Optional[str] = None,
        token: Optional[str] = None,
        remote: str = "origin",
        timeout_seconds: Optional[float] = None,
    ) -> "GitRepository":
        """Clone ``source`` into ``dest`` and check out the triggering revision."""
        dest = Path(dest).expanduser().resolve()
        dest.parent.mkdir(parents=True, exist_ok=True)
        repo = cls(path=dest, token=token, remote=remote)

        args: List[str] = ["clone", "--origin", remote]
        if branch:
            args += ["--branch", branch]
        args += [authenticated_url(source, token), str(dest)]
        logger.info("Cloning {} into {}", redact(source, [token]), dest)
        repo._run(args, timeout_seconds=timeout_seconds, cwd=dest.parent)

        if revision:
            repo.checkout_revision(revision, branch=branch, timeout_seconds=timeout_seconds)
        return repo

    def checkout_revision(
        self,
        revision: str,
        *,
        branch: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        """Point the working tree at ``revision``.

        With a branch name the branch is reset to the revision and keeps its
        upstream; without one the checkout is detached.
        """
        if branch:
            self._run(["checkout", "--force", "-B", branch, revision], timeout_seconds=timeout_seconds)
            self._run(
                ["branch", "--set-upstream-to", f"{self.remote}/{branch}", branch],
                timeout_seconds=timeout_seconds,
                check=False,
            )
        else:
            self._run(["checkout", "--force", "--detach", revision], timeout_seconds=timeout_seconds)

    def is_repository(self) -> bool:
        if not self.path.is_dir():
            return False
        result = self._run(["rev-parse", "--is-inside-work-tree"], check=False)
        return result.ok and result.stdout.strip() == "true"

    def head_sha(self, timeout_seconds: Optional[float] = None) -> str:
        return self._run(["rev-parse", "HEAD"], timeout_seconds=timeout_seconds).stdout.strip()

    def current_branch(self, timeout_seconds: Optional[float] = None) -> Optional[str]:
        """Return the checked-out branch, or None when HEAD is detached."""
        result = self._run(["symbolic-ref", "--quiet", "--short", "HEAD"], timeout_seconds=timeout_seconds, check=False)
        name = result.stdout.strip()
        return name if result.ok and name else None

    def upstream_branch(self, timeout_seconds: Optional[float] = None) -> Optional[str]:
        """Return the remote branch name the current branch tracks."""
        result = self._run(
            ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}"],
            timeout_seconds=timeout_seconds,
            check=False,
        )
        ref = result.stdout.strip()
        if not result.ok or not ref:
            return None
        prefix = f"{self.remote}/"
        return ref[len(prefix):] if ref.startswith(prefix) else ref.split("/", 1)[-1]

    # ------------------------------------------------------------------
    # Change detection
    # ------------------------------------------------------------------

    def stage_all(self, excludes: Sequence[str] = (), timeout_seconds: Optional[float] = None) -> None:
        """Stage every change in the working tree except paths matching ``excludes`` (git globs)."""
        pathspec = [".", *(f":(exclude,glob){pattern}" for pattern in excludes)]
        self._run(["add", "-A", "--", *pathspec], timeout_seconds=timeout_seconds)

    def has_staged_changes(self, timeout_seconds: Optional[float] = None) -> bool:
        """Compare the index with HEAD.

        ``git diff --staged --quiet`` exits 0 for no changes and 1 for changes;
        anything else is an error.
        """
        result = self._run(["diff", "--staged", "--quiet"], timeout_seconds=timeout_seconds, check=False)
        if result.timed_out or result.returncode not in (0, 1):
            raise GitCommandError(result, "git diff --staged failed")
        return result.returncode == 1

    def staged_files(self, timeout_seconds: Optional[float] = None) -> List[str]:
        result = self._run(["diff", "--staged", "--name-only"], timeout_seconds=timeout_seconds)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    # ------------------------------------------------------------------
    # Commit and push
    # ------------------------------------------------------------------

    def commit(
        self,
        message: str,
        *,
        author_name: str,
        author_email: str,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        """Commit the index as the given identity and return the new HEAD sha."""
        self._run(
            [
                "-c",
                f"user.name={author_name}",
                "-c",
                f"user.email={author_email}",
                "-c",
                "commit.gpgsign=false",
                "commit",
                "--quiet",
                "-m",
                message,
            ],
            timeout_seconds=timeout_seconds,
            extra_env={
                "GIT_AUTHOR_NAME": author_name,
                "GIT_AUTHOR_EMAIL": author_email,
                "GIT_COMMITTER_NAME": author_name,
                "GIT_COMMITTER_EMAIL": author_email,
            },
        )
        return self.head_sha(timeout_seconds=timeout_seconds)

    def push(self, branch: str, timeout_seconds: Optional[float] = None) -> CommandResult:
        """Push HEAD to ``branch`` on the remote.

        Raises:
            PushRejectedError: When the remote has diverged.
            GitCommandError: For any other push failure.
        """
        result = self._run(
            ["push", "--porcelain", self.remote, f"HEAD:refs/heads/{branch}"],
            timeout_seconds=timeout_seconds,
            check=False,
        )
        if result.ok:
            return result
        if not result.timed_out and is_push_rejection(result.stdout + "\n" + result.stderr):
            raise PushRejectedError(result, f"Push to {self.remote}/{branch} was rejected")
        raise GitCommandError(result, "git command timed out" if result.timed_out else f"Push to {self.remote}/{branch} failed")

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def discard_changes(self, to: Optional[str] = None, timeout_seconds: Optional[float] = None) -> None:
        """Drop every uncommitted change, and any local commit made after ``to``."""
        self._run(["reset", "--hard", "--quiet", *([to] if to else [])], timeout_seconds=timeout_seconds)
        self._run(["clean", "-fdq"], timeout_seconds=timeout_seconds)
