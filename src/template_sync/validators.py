"""
Input validation functions for template sync.

Provides validation for ownership patterns and project override entries
before they reach the planner, so a typo in a config file is reported
instead of silently matching nothing.
"""

_GLOB_CHARS = ("*", "?", "[", "]")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Override path")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def normalize_relative_path(path: str) -> str:
    """Convert *path* to POSIX separators and strip ``./`` and trailing ``/``."""
    normalized = path.replace("\\", "/").strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.rstrip("/")


def validate_relative_path(path: str) -> tuple[bool, str]:
    """
    Validate a path relative to a tree root.

    Args:
        path: The path to validate

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot be absolute
        - Cannot contain a '..' segment (path traversal protection)
        - Cannot have empty path segments (e.g., 'src//app.ts')
    """
    if not path or not path.strip():
        return (False, format_validation_error("Path", "cannot be empty"))

    if path.startswith("/") or (len(path) > 1 and path[1] == ":"):
        return (
            False,
            format_validation_error("Path", f"'{path}' must be relative"),
        )

    if ".." in path.split("/"):
        return (
            False,
            format_validation_error("Path", f"'{path}' cannot contain '..'"),
        )

    if "//" in path:
        return (
            False,
            format_validation_error(
                "Path", f"'{path}' cannot have empty path segments"
            ),
        )

    return (True, "")


def validate_pattern(pattern: str) -> tuple[bool, str]:
    """
    Validate an ownership or ignore glob pattern.

    Same rules as ``validate_relative_path``; wildcards are allowed.
    """
    return validate_relative_path(normalize_relative_path(pattern))


def validate_override_path(path: str) -> tuple[bool, str]:
    """
    Validate a project override entry.

    Overrides name exact files, so on top of the relative path rules they
    may not contain glob characters.
    """
    normalized = normalize_relative_path(path)
    ok, reason = validate_relative_path(normalized)
    if not ok:
        return (ok, reason)

    if any(ch in normalized for ch in _GLOB_CHARS):
        return (
            False,
            format_validation_error(
                "Override path",
                f"'{path}' cannot contain glob characters",
            ),
        )

    return (True, "")
