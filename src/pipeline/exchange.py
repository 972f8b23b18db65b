"""
Latest-result handoff between the pipeline worker and its readers.
"""

from __future__ import annotations

import threading
from typing import Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class LatestResultCell(Generic[T]):
    """
    Single-slot cell with atomic replace.

    The worker set()s each complete result; readers get() the most recent one
    (or None before the first). Older results are simply overwritten, so a
    slow reader never back-pressures the pipeline.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self._version = 0

    def set(self, value: T) -> int:
        with self._lock:
            self._value = value
            self._version += 1
            return self._version

    def get(self) -> Optional[T]:
        with self._lock:
            return self._value

    def get_versioned(self) -> Tuple[int, Optional[T]]:
        """Return (version, value) read under one lock."""
        with self._lock:
            return self._version, self._value

    @property
    def version(self) -> int:
        """Number of values published so far."""
        with self._lock:
            return self._version

    def clear(self) -> None:
        with self._lock:
            self._value = None
