"""
Utility Functions
=================
Common utilities for command execution, subprocess environments, path
validation and JSON Schema validation.
"""

from .validation import (
    validate_path,
    validate_checkout_dir,
    resolve_output_file,
    is_safe_path,
)

from .schema_validation import (
    validate_against_schema,
    validate_run_report,
    is_valid_run_report,
    validate_artifact_record,
)

# Subprocess helpers
from .commands import CommandResult, run_command
from .subprocess_env import build_git_env, build_minimal_subprocess_env
from .subprocess_text import redact, tail_text

__all__ = [
    # Validation
    "validate_path",
    "validate_checkout_dir",
    "resolve_output_file",
    "is_safe_path",
    # Schema validation
    "validate_against_schema",
    "validate_run_report",
    "is_valid_run_report",
    "validate_artifact_record",
    # Subprocess helpers
    "CommandResult",
    "run_command",
    "build_git_env",
    "build_minimal_subprocess_env",
    "redact",
    "tail_text",
]
