"""
FrameSource interface for pluggable video/image sources.

This defines the contract that all frame sources must implement, enabling the
inference pipeline to work with any input:
- USB/CSI cameras
- RTSP/IP cameras
- Recorded road video files
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

import numpy as np

from models.frame import Frame, PixelFormat


@dataclass(frozen=True)
class FrameSourceConfig:
    """
    Base configuration for frame sources.

    Attributes:
        source_id: Unique identifier for this source (e.g., "dashcam", "survey-01.mp4").
        resolution: Target resolution as (width, height). None = use source default.
        fps: Target frames per second. None = use source default.
        metadata: Additional source-specific configuration.
    """
    source_id: str = "default"
    resolution: Optional[tuple[int, int]] = None
    fps: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class FrameSource(ABC):
    """
    Abstract base class for frame sources.

    Contract:
        - read() returns the next Frame, or None at end of stream.
        - Frames carry strictly increasing seq ids; a frame is never re-delivered.
        - An inaccessible device/file raises SourceUnavailable. That is fatal
          to the session and is not retried by the pipeline.

    Lifecycle:
        1. Create instance with config
        2. Call open() to initialize the source
        3. Call read() repeatedly to get frames
        4. Call close() to release resources

    Can also be used as a context manager:
        with OpenCVSource(config) as source:
            for frame in source:
                process(frame)
    """

    def __init__(self, config: FrameSourceConfig):
        self._config = config
        self._is_open = False
        self._seq = 0

    @property
    def source_id(self) -> str:
        """Unique identifier for this source."""
        return self._config.source_id

    @property
    def is_open(self) -> bool:
        """Whether the source is currently open and ready to read."""
        return self._is_open

    @property
    def last_seq(self) -> int:
        """Sequence id of the last delivered frame (0 before the first)."""
        return self._seq

    @property
    def is_live(self) -> bool:
        """Whether frames come from a real-time device (as opposed to a file)."""
        return True

    @abstractmethod
    def open(self) -> None:
        """
        Open/initialize the frame source.

        Raises:
            SourceUnavailable: If the source cannot be opened.
        """
        pass

    @abstractmethod
    def read(self) -> Optional[Frame]:
        """
        Read the next frame from the source.

        Returns:
            The next Frame, or None at end of stream.

        Raises:
            SourceUnavailable: If the device/file became inaccessible.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """
        Close/release the frame source. Safe to call multiple times.
        """
        pass

    def _make_frame(
        self,
        image: np.ndarray,
        timestamp: Optional[float] = None,
        pixel_format: PixelFormat = PixelFormat.BGR,
    ) -> Frame:
        """Wrap an image in a Frame carrying the next sequence id."""
        self._seq += 1
        return Frame.from_numpy(
            image,
            timestamp=time.time() if timestamp is None else timestamp,
            seq=self._seq,
            pixel_format=pixel_format,
            source=self.source_id,
        )

    def __enter__(self) -> "FrameSource":
        """Context manager entry - opens the source."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - closes the source."""
        self.close()

    def __iter__(self) -> Iterator[Frame]:
        """
        Iterate over frames until the source is exhausted.

        The source must be open before iterating.
        """
        if not self._is_open:
            raise RuntimeError("Source must be open before iterating")

        while True:
            frame = self.read()
            if frame is None:
                break
            yield frame
