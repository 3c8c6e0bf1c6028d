"""
Subprocess Environment Utilities
===============================
Helpers for building minimal environment dictionaries for subprocess execution.
"""

from __future__ import annotations

import os
from typing import Dict, Iterable, Optional, Tuple


# Network settings the collector and pip need to reach the outside world.
_PROXY_KEYS = {
    "HTTP_PROXY",
    "HTTPS_PROXY",
    "NO_PROXY",
    "http_proxy",
    "https_proxy",
    "no_proxy",
    "PIP_INDEX_URL",
    "PIP_EXTRA_INDEX_URL",
    "PIP_CACHE_DIR",
}


def build_minimal_subprocess_env(
    *,
    sanitize_env: bool = True,
    allowlist: Optional[Iterable[str]] = None,
    allow_prefixes: Tuple[str, ...] = (),
    extra: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """Return an environment dict suitable for subprocess execution.

    When sanitize_env is True, only a small allowlist is inherited from the parent
    environment so the collector never sees the push token.

    Args:
        sanitize_env: If False, inherits the full parent env.
        allowlist: Optional extra allowlist keys to include.
        allow_prefixes: Inherit every parent key starting with one of these.
        extra: Values set last, overriding anything inherited.

    Returns:
        Dict[str, str] to pass as subprocess env.
    """

    base_allowlist = {
        "PATH",
        "HOME",
        "USER",
        "LANG",
        "LC_ALL",
        "LC_CTYPE",
        "TZ",
        "TMPDIR",
        "TEMP",
        "TMP",
        "SYSTEMROOT",
        "SSL_CERT_FILE",
        "SSL_CERT_DIR",
        "REQUESTS_CA_BUNDLE",
        "CURL_CA_BUNDLE",
        "VIRTUAL_ENV",
    }
    base_allowlist.update(_PROXY_KEYS)

    if allowlist is not None:
        for key in allowlist:
            if isinstance(key, str) and key:
                base_allowlist.add(key)

    env: Dict[str, str] = {}
    parent = os.environ

    for key, value in parent.items():
        if key in base_allowlist or (allow_prefixes and key.startswith(allow_prefixes)):
            env[key] = value

    env.setdefault("PYTHONDONTWRITEBYTECODE", "1")
    env.setdefault("PYTHONIOENCODING", "utf-8")

    if not sanitize_env:
        inherited = dict(parent)
        inherited.update(env)
        env = inherited

    if extra:
        env.update(extra)

    return env


def build_git_env(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Environment for git commands: no interactive prompts, GIT_* passthrough."""
    env = build_minimal_subprocess_env(
        allowlist={"SSH_AUTH_SOCK", "XDG_CONFIG_HOME"},
        allow_prefixes=("GIT_",),
    )
    env["GIT_TERMINAL_PROMPT"] = "0"
    if extra:
        env.update(extra)
    return env
