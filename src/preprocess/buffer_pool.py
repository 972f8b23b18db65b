"""
Fixed-size pool of reusable input tensors.

Allocating a fresh 3x640x640 float32 buffer per frame churns memory on small
devices. The pool preallocates one buffer per pipeline slot; a lease is handed
back only after the Postprocessor finished with the matching RawOutput.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Tuple

import numpy as np

from models.errors import BufferPoolExhausted


class BufferLease:
    """A pooled buffer on loan. release() returns it to the pool exactly once."""

    def __init__(self, pool: "TensorPool", index: int, array: np.ndarray):
        self._pool = pool
        self.index = index
        self.array = array
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._pool._give_back(self.index)


class TensorPool:
    """
    Thread-safe pool of preallocated numpy buffers of one shape/dtype.

    Example:
        pool = TensorPool((3, 640, 640), size=2)
        lease = pool.acquire()
        try:
            fill(lease.array)
        finally:
            lease.release()
    """

    def __init__(self, shape: Tuple[int, ...], size: int = 2, dtype=np.float32):
        if size < 1:
            raise ValueError("pool size must be >= 1")
        self.shape = tuple(shape)
        self.size = size
        self._buffers: List[np.ndarray] = [np.zeros(self.shape, dtype=dtype) for _ in range(size)]
        self._free: List[int] = list(range(size))
        self._lock = threading.Lock()
        logging.debug(f"TensorPool allocated {size} buffers of shape {self.shape}")

    @property
    def available(self) -> int:
        with self._lock:
            return len(self._free)

    @property
    def in_use(self) -> int:
        return self.size - self.available

    def acquire(self) -> BufferLease:
        with self._lock:
            if not self._free:
                raise BufferPoolExhausted(
                    f"All {self.size} tensor buffers are in use; a lease was not released"
                )
            index = self._free.pop()
        return BufferLease(self, index, self._buffers[index])

    def _give_back(self, index: int) -> None:
        with self._lock:
            if index in self._free:
                raise RuntimeError(f"Buffer {index} returned to pool twice")
            self._free.append(index)
