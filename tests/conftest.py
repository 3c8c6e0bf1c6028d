"""Shared fixtures: throwaway git remotes and checkouts built with the git CLI."""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import pytest


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

CURRENT_PYTHON = f"{sys.version_info.major}.{sys.version_info.minor}"

SEED_IDENTITY = {
    "GIT_AUTHOR_NAME": "Seed Author",
    "GIT_AUTHOR_EMAIL": "seed@example.invalid",
    "GIT_COMMITTER_NAME": "Seed Author",
    "GIT_COMMITTER_EMAIL": "seed@example.invalid",
}

COLLECTOR_WRITES_ALL = """\
from pathlib import Path

Path("iptv.txt").write_text("CCTV-1,http://example.invalid/1\\n", encoding="utf-8")
Path("iptv.m3u").write_text(
    "#EXTM3U\\n#EXTINF:-1,CCTV-1\\nhttp://example.invalid/1\\n", encoding="utf-8"
)
Path("discovered_servers.txt").write_text("http://example.invalid\\n", encoding="utf-8")
"""


def git(cwd: Path, *args: str) -> str:
    env = dict(os.environ)
    env.update(SEED_IDENTITY)
    env["GIT_TERMINAL_PROMPT"] = "0"
    proc = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args],
        cwd=str(cwd),
        env=env,
        check=True,
        capture_output=True,
        text=True,
    )
    return proc.stdout.strip()


@dataclass
class GitRemote:
    """A bare remote plus a seed clone used to push upstream changes."""

    bare: Path
    seed: Path

    def commit_files(self, files: Dict[str, str], message: str = "seed update") -> str:
        for name, content in files.items():
            path = self.seed / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        git(self.seed, "add", "-A")
        git(self.seed, "commit", "--quiet", "-m", message)
        git(self.seed, "push", "--quiet", "origin", "HEAD:refs/heads/main")
        return git(self.seed, "rev-parse", "HEAD")

    def head(self, branch: str = "main") -> str:
        return git(self.bare, "rev-parse", f"refs/heads/{branch}")

    def log_line(self, fmt: str, branch: str = "main") -> str:
        return git(self.bare, "log", "-1", f"--format={fmt}", f"refs/heads/{branch}")

    def commit_count(self, branch: str = "main") -> int:
        return int(git(self.bare, "rev-list", "--count", f"refs/heads/{branch}"))

    def clone_to(self, dest: Path) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        git(dest.parent, "clone", "--quiet", str(self.bare), str(dest))
        return dest


def make_remote(root: Path, files: Optional[Dict[str, str]] = None) -> GitRemote:
    bare = root / "remote.git"
    bare.mkdir(parents=True)
    git(bare, "init", "--quiet", "--bare")
    git(bare, "symbolic-ref", "HEAD", "refs/heads/main")

    seed = root / "seed"
    seed.mkdir()
    git(seed, "init", "--quiet")
    git(seed, "checkout", "--quiet", "-b", "main")
    git(seed, "remote", "add", "origin", str(bare))

    remote = GitRemote(bare=bare, seed=seed)
    initial = {"README.md": "# channels\n", "iptv.py": COLLECTOR_WRITES_ALL}
    initial.update(files or {})
    remote.commit_files(initial, message="initial")
    return remote


@pytest.fixture
def remote(tmp_path: Path) -> GitRemote:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    return make_remote(tmp_path / "origin")


@pytest.fixture
def checkout(tmp_path: Path, remote: GitRemote) -> Path:
    return remote.clone_to(tmp_path / "work" / "repo")
