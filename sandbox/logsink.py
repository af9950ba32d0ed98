"""
Fixed-capacity log buffer for output produced during one sandbox execution.
"""

from __future__ import annotations

import json


def format_log_args(*args: object, sep: str = " ") -> str:
    """Render one print() call as a single log entry.

    Strings are kept verbatim; any other value is JSON-encoded, falling back
    to repr() for objects JSON cannot represent.
    """
    parts: list[str] = []
    for arg in args:
        if isinstance(arg, str):
            parts.append(arg)
            continue
        try:
            parts.append(json.dumps(arg))
        except (TypeError, ValueError):
            parts.append(repr(arg))
    return sep.join(parts)


class BoundedLogSink:
    """Append-only buffer that silently drops entries once full.

    Entries are never truncated: an entry is either stored whole or dropped.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("Log sink capacity must be positive")
        self.capacity: int = capacity
        self._entries: list[str] = []

    def append(self, entry: str) -> bool:
        if len(self._entries) >= self.capacity:
            return False
        self._entries.append(entry)
        return True

    def clear(self) -> None:
        self._entries.clear()

    @property
    def full(self) -> bool:
        return len(self._entries) >= self.capacity

    @property
    def entries(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
