"""
Typed environment readers used by config.py.

Values are stripped before use: a partner API key or webhook secret pasted
with a trailing newline otherwise fails authentication with no useful error.
"""
import os
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

TRUTHY = frozenset({"1", "true", "yes", "on"})


def get_env_str(
    name: str,
    default: Optional[str] = None,
    required: bool = False,
    strip: bool = True
) -> Optional[str]:
    """
    Return the variable's value, or `default` when unset or blank.

    Raises:
        ValueError: `required` is set and the variable is unset or blank
    """
    raw = os.getenv(name)
    value = raw.strip() if (raw is not None and strip) else raw

    if value:
        return value
    if required:
        problem = "is not set" if raw is None else "is empty (or whitespace-only)"
        raise ValueError(f"Required environment variable '{name}' {problem}.")
    return default


def get_env_bool(name: str, default: bool = False) -> bool:
    """Unset or blank -> default; otherwise True only for 1/true/yes/on."""
    value = get_env_str(name)
    if value is None:
        return default
    return value.lower() in TRUTHY


def _get_env_parsed(name: str, default: Optional[T], parse: Callable[[str], T], label: str) -> Optional[T]:
    value = get_env_str(name)
    if value is None:
        return default
    try:
        return parse(value)
    except ValueError:
        raise ValueError(f"Environment variable '{name}' must be {label}. Got: {value!r}") from None


def get_env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    return _get_env_parsed(name, default, int, "an integer")


def get_env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    return _get_env_parsed(name, default, float, "a number")
