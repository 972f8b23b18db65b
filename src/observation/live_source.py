"""
Drop-oldest live capture wrapper.

A live camera keeps producing frames whether or not inference keeps up. This
wrapper reads the inner source on a background thread into a bounded ring
(depth 1 by default). When the ring is full the OLDEST frame is discarded, so
the pipeline always picks up the freshest frame and memory stays bounded.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Deque, Optional

from models.errors import SourceUnavailable
from models.frame import Frame
from .base import FrameSource


class LiveFrameSource(FrameSource):
    """
    Wrap a FrameSource with a capture thread and a bounded drop-oldest buffer.

    Example:
        live = LiveFrameSource(OpenCVSource(OpenCVSourceConfig(device_id=0)))
        with live:
            frame = live.read()   # freshest available frame
    """

    def __init__(
        self,
        inner: FrameSource,
        depth: int = 1,
        stall_timeout_s: Optional[float] = 5.0,
    ):
        super().__init__(inner._config)
        if depth < 1:
            raise ValueError("depth must be >= 1")
        self._inner = inner
        self._depth = depth
        self._stall_timeout_s = stall_timeout_s
        self._buffer: Deque[Frame] = deque(maxlen=depth)
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._ended = False
        self._error: Optional[BaseException] = None
        self._dropped = 0

    @property
    def inner(self) -> FrameSource:
        return self._inner

    @property
    def dropped(self) -> int:
        """Frames discarded because the consumer was slower than capture."""
        return self._dropped

    @property
    def is_live(self) -> bool:
        return True

    def open(self) -> None:
        if self._is_open:
            return
        self._inner.open()
        self._stop.clear()
        self._ended = False
        self._error = None
        self._buffer.clear()
        self._is_open = True
        self._thread = threading.Thread(
            target=self._capture_loop,
            name=f"capture-{self.source_id}",
            daemon=True,
        )
        self._thread.start()
        logging.info(f"LiveFrameSource started: source_id={self.source_id}, depth={self._depth}")

    def _capture_loop(self) -> None:
        try:
            while not self._stop.is_set():
                frame = self._inner.read()
                with self._cond:
                    if frame is None:
                        self._ended = True
                        self._cond.notify_all()
                        return
                    if len(self._buffer) == self._buffer.maxlen:
                        self._dropped += 1
                    self._buffer.append(frame)
                    self._cond.notify_all()
        except Exception as e:
            logging.error(f"Capture thread failed: {e}")
            with self._cond:
                self._error = e
                self._cond.notify_all()

    def read(self) -> Optional[Frame]:
        """
        Return the oldest buffered frame, waiting for one if the ring is empty.

        Returns None at end of stream; raises SourceUnavailable if the capture
        thread failed or no frame arrived within stall_timeout_s.
        """
        if not self._is_open:
            return None
        with self._cond:
            ready = self._cond.wait_for(
                lambda: self._buffer or self._ended or self._error is not None or self._stop.is_set(),
                timeout=self._stall_timeout_s,
            )
            if self._buffer:
                frame = self._buffer.popleft()
                self._seq = frame.seq
                return frame
            if self._error is not None:
                if isinstance(self._error, SourceUnavailable):
                    raise self._error
                raise SourceUnavailable(f"Capture failed: {self._error}") from self._error
            if self._ended or self._stop.is_set():
                return None
            if not ready:
                raise SourceUnavailable(
                    f"No frame from {self.source_id} within {self._stall_timeout_s}s"
                )
        return None

    def close(self) -> None:
        self._stop.set()
        with self._cond:
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        self._inner.close()
        if self._is_open:
            logging.info(
                f"LiveFrameSource closed: source_id={self.source_id}, dropped={self._dropped}"
            )
        self._is_open = False
