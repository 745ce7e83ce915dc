"""Shared utilities."""

import re
import uuid
from datetime import datetime, timezone
from typing import Any

_PATH_TOKEN = re.compile(r'([^.\[\]]+)|\[(\d+)\]')


def generate_execution_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def split_path(path: str) -> list:
    """Splits 'a.b[0].c' into ['a', 'b', 0, 'c']"""
    parts = []
    for key, index in _PATH_TOKEN.findall(path):
        parts.append(int(index) if index else key)
    return parts


def get_path(value: Any, parts: list) -> Any:
    """Walks nested dicts/lists; returns None when any step is missing"""
    current = value
    for part in parts:
        if isinstance(part, int):
            if isinstance(current, (list, tuple)) and -len(current) <= part < len(current):
                current = current[part]
            else:
                return None
        elif isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current
