"""Small helpers shared by the team store, protocol codecs and agent registry."""

from __future__ import annotations

import json
import os
import secrets
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

__all__ = [
    "atomic_write",
    "load_json",
    "save_json",
    "format_timestamp",
    "utc_now_iso",
    "to_base36",
    "generate_id",
]

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def atomic_write(filepath: Path, content: str) -> None:
    """Replace ``filepath`` with ``content`` in one step.

    The text goes to a temporary file in the same directory, which is then
    renamed over the target, so readers see either the old or the new file.
    Missing parent directories are created.
    """
    filepath.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        dir=filepath.parent, prefix=f".{filepath.name}.", suffix=".tmp", text=True
    )
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
        os.replace(tmp_path, filepath)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def load_json(filepath: Path) -> Any:
    """Parse a UTF-8 JSON file. Errors from open() and json.load() propagate."""
    with open(filepath, encoding='utf-8') as f:
        return json.load(f)


def save_json(filepath: Path, data: Any) -> None:
    """Write ``data`` as indented UTF-8 JSON via atomic_write()."""
    content = json.dumps(data, indent=2, ensure_ascii=False)
    atomic_write(filepath, content)


def format_timestamp(dt: datetime) -> str:
    """Format datetime as an ISO 8601 string with millisecond precision."""
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string (``2025-01-01T00:00:00.000Z``)."""
    return format_timestamp(datetime.now(timezone.utc))


def to_base36(value: int) -> str:
    """Render a non-negative integer in lowercase base 36.

    Examples:
        >>> to_base36(0)
        '0'
        >>> to_base36(35)
        'z'
        >>> to_base36(36)
        '10'
    """
    if value < 0:
        raise ValueError(f"value must be non-negative, got {value}")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_id(prefix: str, random_length: int = 6) -> str:
    """Generate ``<prefix>-<base36 ms timestamp>-<random base36>``.

    Args:
        prefix: Leading component (e.g. "agent", "msg", "shutdown")
        random_length: Number of random base36 characters

    Returns:
        The generated id
    """
    timestamp = to_base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_BASE36_DIGITS) for _ in range(random_length))
    return f"{prefix}-{timestamp}-{random_part}"
