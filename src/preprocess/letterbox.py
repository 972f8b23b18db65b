"""
Aspect-preserving letterbox resize and its affine box mapping.

The model sees a fixed-size square-ish canvas. The frame is scaled by a single
factor so it fits, centred, and the remaining border is filled with a constant
pad value. The (scale, pad) pair recorded here is all the Postprocessor needs
to map model-space boxes back to the frame.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from models.detection import BoundingBox

PAD_VALUE = 114


def _scaled(length: int, scale: float) -> int:
    # A sliver frame still keeps one pixel on its short side
    return max(1, int(round(length * scale)))


@dataclass(frozen=True)
class LetterboxMapping:
    """
    Affine mapping between frame pixels and model-input pixels.

    model = frame * scale + pad
    frame = (model - pad) / scale
    """
    scale: float
    pad_x: int
    pad_y: int
    frame_width: int
    frame_height: int
    input_width: int
    input_height: int

    @property
    def resized_size(self) -> Tuple[int, int]:
        """(width, height) of the scaled frame inside the canvas."""
        return _scaled(self.frame_width, self.scale), _scaled(self.frame_height, self.scale)

    def frame_to_model(self, xyxy: np.ndarray) -> np.ndarray:
        """Map (N, 4) frame-pixel x1,y1,x2,y2 boxes into model-input pixels."""
        out = np.asarray(xyxy, dtype=np.float64).copy()
        out[..., [0, 2]] = out[..., [0, 2]] * self.scale + self.pad_x
        out[..., [1, 3]] = out[..., [1, 3]] * self.scale + self.pad_y
        return out

    def model_to_frame(self, xyxy: np.ndarray) -> np.ndarray:
        """Map (N, 4) model-input x1,y1,x2,y2 boxes back into frame pixels."""
        out = np.asarray(xyxy, dtype=np.float64).copy()
        out[..., [0, 2]] = (out[..., [0, 2]] - self.pad_x) / self.scale
        out[..., [1, 3]] = (out[..., [1, 3]] - self.pad_y) / self.scale
        return out

    def model_to_normalized(self, xyxy: np.ndarray) -> np.ndarray:
        """Map model-input boxes to frame-normalized x1,y1,x2,y2 (unclamped)."""
        out = self.model_to_frame(xyxy)
        out[..., [0, 2]] /= self.frame_width
        out[..., [1, 3]] /= self.frame_height
        return out

    def box_to_model(self, box: BoundingBox) -> np.ndarray:
        """Map a frame-normalized box to model-input x1,y1,x2,y2 pixels."""
        x1, y1, x2, y2 = box.as_xyxy()
        pixels = np.array([
            x1 * self.frame_width,
            y1 * self.frame_height,
            x2 * self.frame_width,
            y2 * self.frame_height,
        ])
        return self.frame_to_model(pixels)

    def box_from_model(self, xyxy) -> BoundingBox:
        """Map model-input x1,y1,x2,y2 pixels to a frame-normalized box."""
        x1, y1, x2, y2 = self.model_to_normalized(np.asarray(xyxy, dtype=np.float64))
        return BoundingBox.from_xyxy(float(x1), float(y1), float(x2), float(y2))


def compute_letterbox(
    frame_width: int,
    frame_height: int,
    input_width: int,
    input_height: int,
) -> LetterboxMapping:
    """Compute the scale and centring pads for fitting a frame into the model input."""
    scale = min(input_width / frame_width, input_height / frame_height)
    new_w = _scaled(frame_width, scale)
    new_h = _scaled(frame_height, scale)
    return LetterboxMapping(
        scale=scale,
        pad_x=(input_width - new_w) // 2,
        pad_y=(input_height - new_h) // 2,
        frame_width=frame_width,
        frame_height=frame_height,
        input_width=input_width,
        input_height=input_height,
    )


def letterbox_image(
    image: np.ndarray,
    mapping: LetterboxMapping,
    pad_value: int = PAD_VALUE,
    out: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Resize + pad an HxWx3 uint8 image onto the model canvas described by mapping.

    Returns the canvas (``out`` when given, else a new array).
    """
    new_w, new_h = mapping.resized_size
    if (image.shape[1], image.shape[0]) != (new_w, new_h):
        interpolation = cv2.INTER_AREA if mapping.scale < 1 else cv2.INTER_LINEAR
        image = cv2.resize(image, (new_w, new_h), interpolation=interpolation)

    if out is None:
        out = np.empty((mapping.input_height, mapping.input_width, 3), dtype=np.uint8)
    out[...] = pad_value
    out[mapping.pad_y:mapping.pad_y + new_h, mapping.pad_x:mapping.pad_x + new_w] = image
    return out
