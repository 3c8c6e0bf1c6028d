"""Version control helpers."""

from .git import GitCommandError, GitRepository, PushRejectedError, authenticated_url

__all__ = ["GitCommandError", "GitRepository", "PushRejectedError", "authenticated_url"]
