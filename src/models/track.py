"""
Track models for pothole tracking state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .detection import BoundingBox


class TrackState(str, Enum):
    """Lifecycle of a tracked pothole: TENTATIVE -> CONFIRMED -> LOST -> REMOVED."""
    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"
    LOST = "lost"
    REMOVED = "removed"

    @property
    def is_terminal(self) -> bool:
        return self is TrackState.REMOVED


@dataclass
class TrackedObject:
    """
    A pothole tracked across video frames.

    Mutable; owned by the tracker. Consumers only ever see TrackSnapshot copies.

    Attributes:
        track_id: Stable identifier, never reused within a session.
        smoothed_box: EMA-smoothed box in frame-normalized coordinates.
        confidence: EMA-smoothed confidence (0-1).
        class_id: Class of the detections feeding this track.
        first_seen_seq: Frame seq of the creating detection.
        last_seen_seq: Frame seq of the latest matched detection.
        hit_count: Number of matched detections (including the first).
        miss_count: Consecutive frames without a match.
        lost_frames: Frames spent in the LOST state since it was last seen.
        state: Current lifecycle state.
    """
    track_id: int
    smoothed_box: BoundingBox
    confidence: float
    class_id: int
    first_seen_seq: int
    last_seen_seq: int
    hit_count: int = 1
    miss_count: int = 0
    lost_frames: int = 0
    state: TrackState = TrackState.TENTATIVE
    class_name: Optional[str] = None

    @property
    def age(self) -> int:
        """Frames between first and last sighting, inclusive."""
        return self.last_seen_seq - self.first_seen_seq + 1

    def snapshot(self) -> "TrackSnapshot":
        return TrackSnapshot.from_track(self)


@dataclass(frozen=True)
class TrackSnapshot:
    """
    Immutable, read-only view of a tracked pothole (for consumers/API).
    """
    track_id: int
    bbox: BoundingBox
    confidence: float
    class_id: int
    state: TrackState
    first_seen_seq: int
    last_seen_seq: int
    hit_count: int
    class_name: Optional[str] = None

    @classmethod
    def from_track(cls, track: TrackedObject) -> "TrackSnapshot":
        """Create immutable snapshot from a TrackedObject."""
        return cls(
            track_id=track.track_id,
            bbox=track.smoothed_box,
            confidence=track.confidence,
            class_id=track.class_id,
            state=track.state,
            first_seen_seq=track.first_seen_seq,
            last_seen_seq=track.last_seen_seq,
            hit_count=track.hit_count,
            class_name=track.class_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "track_id": self.track_id,
            "bbox": list(self.bbox.as_tuple()),
            "confidence": self.confidence,
            "class_id": self.class_id,
            "class_name": self.class_name,
            "state": self.state.value,
            "first_seen_seq": self.first_seen_seq,
            "last_seen_seq": self.last_seen_seq,
            "hit_count": self.hit_count,
        }
