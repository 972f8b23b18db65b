"""
Frame model for captured video frames.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np


class PixelFormat(str, Enum):
    """Pixel layouts a FrameSource may deliver."""
    BGR = "bgr"
    RGB = "rgb"
    RGBA = "rgba"
    GRAY = "gray"

    @property
    def channels(self) -> int:
        if self is PixelFormat.GRAY:
            return 1
        if self is PixelFormat.RGBA:
            return 4
        return 3


@dataclass(frozen=True)
class Frame:
    """
    A raw frame with capture metadata.

    Frames are immutable once produced. The pipeline owns them until the
    Preprocessor has consumed them.

    Attributes:
        image: Pixel buffer, HxWxC (or HxW for GRAY) uint8.
        width: Frame width in pixels.
        height: Frame height in pixels.
        timestamp: Wall-clock capture time (seconds since epoch).
        seq: Monotonically increasing sequence id, starting at 1.
        pixel_format: Channel layout of ``image``.
        source: Identifier for the camera/video source.
    """
    image: np.ndarray
    width: int
    height: int
    timestamp: float
    seq: int
    pixel_format: PixelFormat = PixelFormat.BGR
    source: Optional[str] = None

    @classmethod
    def from_numpy(
        cls,
        image: np.ndarray,
        timestamp: float,
        seq: int,
        pixel_format: PixelFormat = PixelFormat.BGR,
        source: Optional[str] = None,
    ) -> "Frame":
        """Create a Frame from a numpy array, reading width/height from its shape."""
        h, w = image.shape[:2]
        return cls(
            image=image,
            width=w,
            height=h,
            timestamp=timestamp,
            seq=seq,
            pixel_format=pixel_format,
            source=source,
        )

    @property
    def size(self) -> Tuple[int, int]:
        """Return (width, height)."""
        return (self.width, self.height)

    @property
    def area(self) -> int:
        return self.width * self.height
