"""Lenient ``.env`` loading.

Configuration dataclasses read the environment at import time, so callers
load ``.env`` before importing ``src.config``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional


_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def load_env_file_lenient(env_path: Optional[Path] = None) -> int:
    """Load KEY=VALUE lines without raising or printing parse warnings.

    Looks at ``env_path`` when given, otherwise ``./.env``. Variables already
    present in the environment win.

    Returns:
        Number of variables that were set.
    """
    path = env_path or Path.cwd() / ".env"
    if not path.is_file():
        return 0

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError):
        return 0

    loaded = 0
    for raw_line in lines:
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not _KEY_RE.match(key):
            continue
        if key in os.environ:
            continue
        os.environ[key] = value.strip().strip('"').strip("'")
        loaded += 1
    return loaded
