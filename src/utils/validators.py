"""Lightweight validation helpers for identity hints."""

import math
import re
from typing import Any, Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


def is_email_like(value: Any) -> bool:
    """True for strings shaped like local@domain."""
    return isinstance(value, str) and bool(_EMAIL_RE.match(value.strip()))


def normalize_email(value: Any) -> Optional[str]:
    """Lower-case and strip an email hint; None when it is not email-like."""
    if not is_email_like(value):
        return None
    return value.strip().lower()


def optional_text(value: Any) -> Optional[str]:
    """Coerce a producer-supplied scalar to a stripped string, or None."""
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def as_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Parse a numeric field leniently; bad or non-finite values fall back to default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def is_truthy(value: Any) -> bool:
    """Producers send flags as booleans, numbers or strings."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y", "on")
    return bool(value)
