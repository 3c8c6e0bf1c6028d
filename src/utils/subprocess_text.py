"""Text helpers for subprocess output."""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional


def to_text(value: Any) -> str:
    """Coerce captured subprocess output (bytes, str or None) to text."""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", "replace")
    return str(value)


def tail_text(text: str, max_chars: int = 8000) -> str:
    if not text:
        return ""
    if len(text) <= max_chars:
        return text
    return text[-max_chars:]


_URL_CREDENTIALS_RE = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")


def redact(text: str, secrets: Optional[Iterable[Optional[str]]] = None) -> str:
    """Mask secrets and URL userinfo in text destined for logs or reports."""
    if not text:
        return ""
    out = _URL_CREDENTIALS_RE.sub(r"\g<scheme>***@", text)
    for secret in secrets or ():
        if secret:
            out = out.replace(secret, "***")
    return out


def redact_command(command: Iterable[str], secrets: Optional[Iterable[Optional[str]]] = None) -> List[str]:
    secret_list = list(secrets or ())
    return [redact(str(part), secret_list) for part in command]
