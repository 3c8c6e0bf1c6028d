"""
Validation Utilities
====================
Path validation helpers for checkout directories and well-known output files.
"""

import os
from pathlib import Path
from typing import Optional, Union

from loguru import logger


def is_safe_path(path: Union[str, Path], base_dir: Optional[Union[str, Path]] = None) -> bool:
    """
    Check if a path is safe (no traversal segments, stays under base_dir).

    Args:
        path: Path to validate
        base_dir: Optional base directory that path must be under

    Returns:
        True if path is safe, False otherwise
    """
    try:
        if any(part == ".." for part in Path(path).parts):
            logger.warning("Potential path traversal detected: {}", path)
            return False

        if base_dir:
            resolved = Path(path).resolve()
            base_resolved = Path(base_dir).resolve()
            if not resolved.is_relative_to(base_resolved):
                logger.warning("Path {} is not under base directory {}", resolved, base_resolved)
                return False

        return True

    except (OSError, ValueError) as e:
        logger.warning("Path validation error for {}: {}", path, e)
        return False


def validate_path(
    path: Union[str, Path],
    must_exist: bool = False,
    must_be_file: bool = False,
    must_be_dir: bool = False,
    base_dir: Optional[Union[str, Path]] = None,
) -> Path:
    """
    Validate a file path.

    Raises:
        ValueError: If path fails validation
        FileNotFoundError: If path must exist but doesn't
    """
    if not path:
        raise ValueError("Path cannot be empty")

    path_obj = Path(path).expanduser()

    if not is_safe_path(path_obj, base_dir):
        raise ValueError(f"Path validation failed: {path}")

    if must_exist and not path_obj.exists():
        raise FileNotFoundError(f"Path does not exist: {path}")

    if must_be_file and path_obj.exists() and not path_obj.is_file():
        raise ValueError(f"Path is not a file: {path}")

    if must_be_dir and path_obj.exists() and not path_obj.is_dir():
        raise ValueError(f"Path is not a directory: {path}")

    return path_obj.resolve()


def validate_checkout_dir(checkout_dir: Union[str, Path]) -> Path:
    """
    Validate that a directory is a git working tree.

    Raises:
        FileNotFoundError: If the directory does not exist
        ValueError: If it is not a directory or has no .git entry
    """
    path = validate_path(checkout_dir, must_exist=True, must_be_dir=True)
    if not (path / ".git").exists():
        raise ValueError(f"Not a git working tree: {path}")
    return path


def resolve_output_file(checkout_dir: Path, name: str) -> Path:
    """Resolve a well-known output file name inside the checkout.

    Only bare file names are accepted; the result never escapes the checkout.
    """
    if not name or os.path.basename(name) != name or name in {".", ".."}:
        raise ValueError(f"Output file must be a bare file name: {name!r}")
    out = (checkout_dir / name).resolve()
    if not out.is_relative_to(checkout_dir.resolve()):
        raise ValueError(f"Output file escapes checkout: {name!r}")
    return out
