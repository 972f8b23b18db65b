"""
Pipeline result, statistics and session lifecycle models.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .track import TrackSnapshot


class SessionState(str, Enum):
    """Scheduler lifecycle states."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"
    ENDED = "ended"


@dataclass(frozen=True)
class PipelineResult:
    """
    Complete output of one processed frame.

    Published atomically through the latest-result cell; never mutated.

    Attributes:
        frame_seq: Sequence id of the processed frame.
        timestamp: Capture timestamp of the frame.
        frame_size: (width, height) of the frame in pixels.
        tracks: Confirmed (and optionally lost) tracks in track-id order.
        detection_count: Number of detections decoded from this frame.
        latency_ms: Time from frame pickup to publication.
    """
    frame_seq: int
    timestamp: float
    frame_size: Tuple[int, int]
    tracks: Tuple[TrackSnapshot, ...] = ()
    detection_count: int = 0
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frame_seq": self.frame_seq,
            "timestamp": self.timestamp,
            "frame_size": list(self.frame_size),
            "tracks": [t.to_dict() for t in self.tracks],
            "detection_count": self.detection_count,
            "latency_ms": self.latency_ms,
        }


@dataclass(frozen=True)
class SessionEnded:
    """
    Terminal session signal.

    Attributes:
        reason: "completed" (end of stream), "stopped" (stop() called) or "error".
        error_kind: ``kind`` of the causing error when reason is "error".
        error: The causing exception, if any.
    """
    reason: str
    error_kind: Optional[str] = None
    error: Optional[BaseException] = None
    frames_processed: int = 0

    @property
    def is_error(self) -> bool:
        return self.reason == "error"


@dataclass
class PipelineStats:
    """Runtime statistics (diagnostics channel) for the pipeline."""
    frames_read: int = 0
    frames_processed: int = 0
    frames_dropped_stale: int = 0
    frames_skipped: int = 0
    detections_total: int = 0
    errors_by_kind: Dict[str, int] = field(default_factory=dict)
    start_time: float = field(default_factory=time.time)
    last_stats_log_time: float = field(default_factory=time.time)
    last_frame_ts: Optional[float] = None
    last_latency_ms: float = 0.0
    avg_latency_ms: float = 0.0

    def record_error(self, kind: str) -> None:
        self.errors_by_kind[kind] = self.errors_by_kind.get(kind, 0) + 1

    def record_latency(self, latency_ms: float) -> None:
        self.last_latency_ms = latency_ms
        if self.frames_processed <= 1:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms = 0.9 * self.avg_latency_ms + 0.1 * latency_ms

    @property
    def fps(self) -> float:
        elapsed = time.time() - self.start_time
        if elapsed <= 0:
            return 0.0
        return self.frames_processed / elapsed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frames_read": self.frames_read,
            "frames_processed": self.frames_processed,
            "frames_dropped_stale": self.frames_dropped_stale,
            "frames_skipped": self.frames_skipped,
            "detections_total": self.detections_total,
            "errors_by_kind": dict(self.errors_by_kind),
            "start_time": self.start_time,
            "last_frame_ts": self.last_frame_ts,
            "last_latency_ms": self.last_latency_ms,
            "avg_latency_ms": self.avg_latency_ms,
            "fps": self.fps,
        }
