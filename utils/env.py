"""
Environment variable readers used only by config.load_settings().

Business code never calls these directly; it receives a Settings object.
"""
import os
from typing import Optional


def get_env_str(
    name: str,
    default: Optional[str] = None,
    required: bool = False,
    strip: bool = True
) -> Optional[str]:
    """
    Read a string variable, treating empty / whitespace-only values as unset.

    Stripping matters for secrets pasted into dashboards (SMTP_PASS,
    RESEND_API_KEY) where a trailing newline breaks authentication.

    Raises:
        ValueError: If required=True and the value is missing or empty
    """
    value = os.getenv(name)

    if value is None:
        if required:
            raise ValueError(f"Required environment variable '{name}' is not set.")
        return default

    if strip:
        value = value.strip()

    if not value:
        if required:
            raise ValueError(f"Required environment variable '{name}' is empty (or whitespace-only).")
        return default

    return value


def get_env_bool(name: str, default: bool = False) -> bool:
    """
    Truthy values: "1", "true", "yes", "on" (case-insensitive).
    Anything else that is set counts as False; unset returns default.
    """
    value = os.getenv(name, "").strip().lower()

    if not value:
        return default

    return value in ("1", "true", "yes", "on")


def get_env_int(name: str, default: int) -> int:
    """Read an integer, falling back to default when unset or malformed."""
    raw = get_env_str(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable '{name}' must be an integer. Got: {raw!r}")
