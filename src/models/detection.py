"""
Detection models for pothole detection results.

Boxes are expressed in frame-normalized coordinates: (x, y) is the top-left
corner and (w, h) the size, all as fractions of the frame extent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class BoundingBox:
    """
    A bounding box in frame-normalized coordinates.

    Attributes:
        x: Left edge (0-1).
        y: Top edge (0-1).
        w: Width (0-1).
        h: Height (0-1).
    """
    x: float
    y: float
    w: float
    h: float

    @property
    def x2(self) -> float:
        return self.x + self.w

    @property
    def y2(self) -> float:
        return self.y + self.h

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.w / 2, self.y + self.h / 2)

    @property
    def area(self) -> float:
        return self.w * self.h

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """Return as (x, y, w, h) tuple."""
        return (self.x, self.y, self.w, self.h)

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        """Return as (x1, y1, x2, y2) tuple."""
        return (self.x, self.y, self.x2, self.y2)

    def to_pixels(self, frame_width: int, frame_height: int) -> Tuple[int, int, int, int]:
        """Return integer pixel (x1, y1, x2, y2) for a frame of the given size."""
        return (
            int(round(self.x * frame_width)),
            int(round(self.y * frame_height)),
            int(round(self.x2 * frame_width)),
            int(round(self.y2 * frame_height)),
        )

    def clamped(self) -> "BoundingBox":
        """Clip the box to the unit square."""
        x1 = min(max(self.x, 0.0), 1.0)
        y1 = min(max(self.y, 0.0), 1.0)
        x2 = min(max(self.x2, 0.0), 1.0)
        y2 = min(max(self.y2, 0.0), 1.0)
        return BoundingBox(x=x1, y=y1, w=max(0.0, x2 - x1), h=max(0.0, y2 - y1))

    def iou(self, other: "BoundingBox") -> float:
        """Intersection over union with another box (0 when disjoint)."""
        return box_iou(self.as_xyxy(), other.as_xyxy())

    @classmethod
    def from_tuple(cls, t: Tuple[float, float, float, float]) -> "BoundingBox":
        """Create from (x, y, w, h) tuple."""
        return cls(x=t[0], y=t[1], w=t[2], h=t[3])

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingBox":
        """Create from corner coordinates."""
        return cls(x=x1, y=y1, w=x2 - x1, h=y2 - y1)


def box_iou(
    a: Tuple[float, float, float, float],
    b: Tuple[float, float, float, float],
) -> float:
    """
    Calculate Intersection over Union (IoU) between two (x1, y1, x2, y2) boxes.

    Returns:
        IoU value between 0 and 1
    """
    x1_1, y1_1, x2_1, y2_1 = a
    x1_2, y1_2, x2_2, y2_2 = b

    x1_i = max(x1_1, x1_2)
    y1_i = max(y1_1, y1_2)
    x2_i = min(x2_1, x2_2)
    y2_i = min(y2_1, y2_2)

    if x2_i <= x1_i or y2_i <= y1_i:
        return 0.0

    intersection = (x2_i - x1_i) * (y2_i - y1_i)

    area1 = (x2_1 - x1_1) * (y2_1 - y1_1)
    area2 = (x2_2 - x1_2) * (y2_2 - y1_2)
    union = area1 + area2 - intersection

    if union <= 0:
        return 0.0

    return intersection / union


@dataclass(frozen=True)
class Detection:
    """
    A single pothole detection after NMS.

    Attributes:
        bbox: Bounding box in frame-normalized coordinates.
        class_id: Class index from the model's label table.
        confidence: Detection confidence score (0-1).
        source_frame_seq: Sequence id of the frame this came from.
        class_name: Optional human-readable class name.
    """
    bbox: BoundingBox
    class_id: int
    confidence: float
    source_frame_seq: int
    class_name: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")

    @classmethod
    def from_xywh(
        cls,
        x: float,
        y: float,
        w: float,
        h: float,
        class_id: int = 0,
        confidence: float = 1.0,
        source_frame_seq: int = 0,
        class_name: Optional[str] = None,
    ) -> "Detection":
        """Create Detection from normalized x, y, w, h."""
        return cls(
            bbox=BoundingBox(x=x, y=y, w=w, h=h),
            class_id=class_id,
            confidence=confidence,
            source_frame_seq=source_frame_seq,
            class_name=class_name,
        )

    def to_numpy(self) -> np.ndarray:
        """Convert to numpy array [x, y, w, h, confidence, class_id]."""
        return np.array([
            self.bbox.x, self.bbox.y, self.bbox.w, self.bbox.h,
            self.confidence,
            self.class_id,
        ])


def detections_to_numpy(detections: List[Detection]) -> np.ndarray:
    """
    Convert list of Detection objects to a numpy array.

    Returns:
        Array of shape (N, 6) with [x, y, w, h, confidence, class_id].
    """
    if not detections:
        return np.zeros((0, 6))
    return np.array([d.to_numpy() for d in detections])
