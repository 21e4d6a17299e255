"""
workflows/utils.py

Default clock and id generator handed to the workflow components.

Both are plain callables so tests (or a host runtime) can swap in their own.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from uuid import uuid4

Clock = Callable[[], datetime]
IdFactory = Callable[[str], str]


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def generate_id(prefix: str) -> str:
    """Return a unique id such as ``'case_9f1c...'``."""
    return f"{prefix}_{uuid4().hex}"
