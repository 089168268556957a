"""
Security Module for Path and Command Validation

This module provides the checks that guard every file and command operation
exposed by API Weaver. File paths supplied by clients are normalized into a
relative form and then verified against the project root; command lines are
screened against deny patterns and an allow-list of base commands.

Key Functions:
- sanitize_path: Normalize a client path into a root-relative form
- is_path_safe: Authoritative containment check against the project root
- validate_file_path: Input validation for client-supplied file paths
- check_command: Classify a command line as safe or unsafe
- log_security_violation: Record security violations for audit

Security Principles:
- Sanitization is best effort; is_path_safe on the resolved path decides
- Command deny patterns are checked before the allow-list
- Violations are logged with structured context and rejected
- Symbolic links are not resolved (a link inside the root may point outside it)
"""

import logging
import os
import posixpath
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from .errors import SecurityViolationError

logger = logging.getLogger(__name__)

MAX_PATH_LENGTH = 500

ACCESS_DENIED_MESSAGE = "Access denied: path outside project directory"

SAFE_COMMANDS = frozenset(
    {
        "ls", "cat", "head", "tail", "wc", "grep", "find", "echo", "pwd",
        "date", "whoami", "env", "node", "npm", "npx", "pnpm", "yarn", "git",
        "which", "mkdir", "touch", "cp", "mv", "rm",
    }
)

# (pattern, description) pairs, checked in order against the raw command line
BLOCKED_PATTERNS = (
    (re.compile(r"[;&|`$()]"), "shell metacharacter"),
    (re.compile(r"/etc/"), "/etc/ access"),
    (re.compile(r"/proc/"), "/proc/ access"),
    (re.compile(r"/sys/"), "/sys/ access"),
    (re.compile(r"rm\s+-rf\s+/"), "recursive delete from filesystem root"),
    (re.compile(r"sudo"), "privilege escalation"),
    (re.compile(r"chmod\s+777"), "world-writable permissions"),
    (re.compile(r"curl.*\|.*sh"), "piping download into a shell"),
    (re.compile(r"wget.*\|.*sh"), "piping download into a shell"),
)

_LEADING_PARENT = "../"


@dataclass(frozen=True)
class PathValidation:
    """Outcome of validate_file_path."""

    valid: bool
    error: Optional[str] = None
    sanitized: Optional[str] = None


@dataclass(frozen=True)
class CommandVerdict:
    """Outcome of check_command; reason is set when the command is refused."""

    safe: bool
    reason: Optional[str] = None


def sanitize_path(input_path: str) -> str:
    """
    Normalize a client-supplied path into a root-relative path.

    Strips NUL bytes, collapses ``.`` and ``..`` segments lexically, removes
    leading slashes and then any remaining leading ``..`` segments. An empty
    result means the root itself and is returned as ``"."``.

    The result is idempotent: sanitize_path(sanitize_path(p)) == sanitize_path(p).
    """
    cleaned = input_path.replace("\0", "")
    cleaned = posixpath.normpath(cleaned) if cleaned else "."
    cleaned = cleaned.lstrip("/")

    while cleaned.startswith(_LEADING_PARENT) or cleaned == "..":
        if cleaned.startswith(_LEADING_PARENT):
            cleaned = cleaned[len(_LEADING_PARENT):]
        else:
            cleaned = cleaned[2:]

    return cleaned or "."


def is_path_safe(path: str, root: str) -> bool:
    """
    Check that ``path`` resolves to ``root`` or a descendant of it.

    Relative paths are resolved against the root; absolute paths are taken
    as-is. A plain string prefix test is not enough (``/srv/app-evil`` starts
    with ``/srv/app``), so descendants must start with ``root + os.sep``.
    """
    abs_root = os.path.abspath(root)
    resolved = os.path.abspath(os.path.join(abs_root, path))

    if resolved == abs_root:
        return True

    prefix = abs_root if abs_root.endswith(os.sep) else abs_root + os.sep
    return resolved.startswith(prefix)


def validate_file_path(file_path: object, root: str) -> PathValidation:
    """Validate a client-supplied path and return its sanitized form."""
    if not isinstance(file_path, str) or not file_path:
        return PathValidation(valid=False, error="File path is required")

    if len(file_path) > MAX_PATH_LENGTH:
        return PathValidation(valid=False, error="File path too long")

    if "\0" in file_path:
        return PathValidation(valid=False, error="Invalid characters in path")

    sanitized = sanitize_path(file_path)
    if not is_path_safe(sanitized, root):
        return PathValidation(valid=False, error="Path outside project directory")

    return PathValidation(valid=True, sanitized=sanitized)


def resolve_within_root(file_path: str, root: str, operation: str = "file_operation") -> str:
    """
    Resolve a sanitized relative path to an absolute path inside ``root``.

    Raises:
        SecurityViolationError: If the resolved path leaves the root
    """
    abs_root = os.path.abspath(root)
    resolved = os.path.abspath(os.path.join(abs_root, file_path))

    if not is_path_safe(resolved, abs_root):
        log_security_violation(
            violation_type="path_traversal",
            operation=operation,
            attempted_path=file_path,
            root_directory=abs_root,
            resolved_path=resolved,
        )
        raise SecurityViolationError(ACCESS_DENIED_MESSAGE)

    logger.debug(f"Path validation passed for {operation}: {file_path} -> {resolved}")
    return resolved


def check_command(command: str, allowed_commands: Iterable[str] = SAFE_COMMANDS) -> CommandVerdict:
    """
    Classify a command line.

    Deny patterns are matched against the raw line first and short-circuit
    with the matching reason. Otherwise the first whitespace-separated token
    must be one of ``allowed_commands``.
    """
    for pattern, description in BLOCKED_PATTERNS:
        if pattern.search(command):
            return CommandVerdict(
                safe=False, reason=f"Command contains blocked pattern: {description}"
            )

    tokens = command.strip().split()
    if not tokens:
        return CommandVerdict(safe=False, reason="Empty command")

    base_command = tokens[0]
    if base_command not in allowed_commands:
        return CommandVerdict(
            safe=False, reason=f"Command '{base_command}' is not in the allowed list"
        )

    return CommandVerdict(safe=True)


def log_security_violation(
    violation_type: str,
    operation: str,
    attempted_path: str,
    root_directory: str,
    resolved_path: str | None = None,
    error: str | None = None,
) -> None:
    """
    Log a security violation for audit purposes.

    Creates a structured log entry for violations so they can be monitored
    and correlated. Client-facing notification happens in the HTTP layer,
    which sees the SecurityViolationError raised alongside this record.

    Args:
        violation_type: Type of violation (e.g., "path_traversal")
        operation: Name of the operation that triggered the violation
        attempted_path: The path that was attempted
        root_directory: The root directory constraint
        resolved_path: The resolved absolute path (if available)
        error: Any error message associated with the violation
    """
    violation_data = {
        "violation_type": violation_type,
        "operation": operation,
        "attempted_path": attempted_path,
        "root_directory": root_directory,
        "resolved_path": resolved_path,
        "error": error,
    }

    logger.warning(
        f"SECURITY VIOLATION: {violation_type} in {operation}", extra=violation_data
    )
