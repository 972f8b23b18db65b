"""
Frame -> model tensor preprocessing.

Steps: validate, convert colour to RGB, letterbox to the model input size,
scale to [0, 1] (optionally mean/std normalize), HWC -> CHW into a pooled
float32 buffer. The letterbox mapping rides along with the tensor so the
Postprocessor can map boxes back to the frame.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from models.errors import InvalidFrame
from models.frame import Frame, PixelFormat
from .buffer_pool import BufferLease, TensorPool
from .letterbox import LetterboxMapping, compute_letterbox, letterbox_image

_TO_RGB = {
    PixelFormat.BGR: cv2.COLOR_BGR2RGB,
    PixelFormat.RGBA: cv2.COLOR_RGBA2RGB,
    PixelFormat.GRAY: cv2.COLOR_GRAY2RGB,
}


@dataclass
class PreparedTensor:
    """
    A model-ready (C, H, W) float32 tensor plus the metadata to undo it.

    ``tensor`` is a view into a pooled buffer; call release() once the
    corresponding RawOutput has been decoded.
    """
    tensor: np.ndarray
    mapping: LetterboxMapping
    frame_seq: int
    lease: Optional[BufferLease] = None

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.tensor.shape

    def release(self) -> None:
        if self.lease is not None:
            self.lease.release()


class Preprocessor:
    """
    Deterministic Frame -> PreparedTensor transform.

    Args:
        input_size: Model input as (width, height).
        pool: Buffer pool to draw tensors from. A private pool of 2 is created
            when omitted.
        mean: Optional per-channel RGB mean (0-1 scale).
        std: Optional per-channel RGB std (0-1 scale).
    """

    def __init__(
        self,
        input_size: Tuple[int, int] = (640, 640),
        pool: Optional[TensorPool] = None,
        mean: Optional[Sequence[float]] = None,
        std: Optional[Sequence[float]] = None,
    ):
        self.input_width, self.input_height = int(input_size[0]), int(input_size[1])
        expected_shape = (3, self.input_height, self.input_width)
        if pool is None:
            pool = TensorPool(expected_shape, size=2)
        elif pool.shape != expected_shape:
            raise ValueError(f"Pool shape {pool.shape} does not match input {expected_shape}")
        self.pool = pool
        self._mean = np.asarray(mean, dtype=np.float32).reshape(3, 1, 1) if mean is not None else None
        self._std = np.asarray(std, dtype=np.float32).reshape(3, 1, 1) if std is not None else None
        self._canvas = np.empty((self.input_height, self.input_width, 3), dtype=np.uint8)

    def _validate(self, frame: Frame) -> None:
        if frame.width <= 0 or frame.height <= 0:
            raise InvalidFrame(f"Frame {frame.seq} has zero area ({frame.width}x{frame.height})")
        image = frame.image
        if image is None or image.size == 0:
            raise InvalidFrame(f"Frame {frame.seq} has an empty pixel buffer")
        if image.dtype != np.uint8:
            raise InvalidFrame(f"Frame {frame.seq} has unsupported dtype {image.dtype}")
        if image.shape[:2] != (frame.height, frame.width):
            raise InvalidFrame(
                f"Frame {frame.seq} buffer shape {image.shape[:2]} does not match "
                f"{frame.height}x{frame.width}"
            )
        channels = 1 if image.ndim == 2 else image.shape[2]
        try:
            pixel_format = PixelFormat(frame.pixel_format)
        except ValueError:
            raise InvalidFrame(f"Frame {frame.seq} has unsupported pixel format {frame.pixel_format}")
        if channels != pixel_format.channels:
            raise InvalidFrame(
                f"Frame {frame.seq} has {channels} channels, {pixel_format.value} needs {pixel_format.channels}"
            )

    def to_rgb(self, frame: Frame) -> np.ndarray:
        pixel_format = PixelFormat(frame.pixel_format)
        if pixel_format is PixelFormat.RGB:
            return frame.image
        return cv2.cvtColor(frame.image, _TO_RGB[pixel_format])

    def prepare(self, frame: Frame) -> PreparedTensor:
        """
        Convert a frame into a pooled model-input tensor.

        Raises:
            InvalidFrame: unsupported format or zero-area frame (skip it).
            BufferPoolExhausted: every pooled buffer is still leased.
        """
        self._validate(frame)
        mapping = compute_letterbox(frame.width, frame.height, self.input_width, self.input_height)
        rgb = self.to_rgb(frame)
        canvas = letterbox_image(rgb, mapping, out=self._canvas)

        lease = self.pool.acquire()
        try:
            tensor = lease.array
            np.multiply(canvas.transpose(2, 0, 1), 1.0 / 255.0, out=tensor, casting="unsafe")
            if self._mean is not None:
                tensor -= self._mean
            if self._std is not None:
                tensor /= self._std
        except Exception:
            lease.release()
            raise

        return PreparedTensor(tensor=tensor, mapping=mapping, frame_seq=frame.seq, lease=lease)
