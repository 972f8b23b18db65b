"""
Session-level pothole aggregation.

SessionAggregator is registered as a scheduler callback. It keeps one record
per confirmed track id, so a pothole seen over 40 frames is counted once,
and tallies per-frame risk observations for the road severity rating.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from models.config import SeverityConfig
from models.detection import BoundingBox
from models.status import PipelineResult
from models.track import TrackSnapshot, TrackState
from .severity import RiskLevel, Severity, SizeCategory, assess


@dataclass
class PotholeRecord:
    """
    Everything the session knows about one de-duplicated pothole.

    Attributes:
        track_id: Tracker id of the pothole.
        bbox: Largest smoothed box observed (frame-normalized).
        peak_confidence: Highest smoothed confidence observed.
        severity: Severity of the largest box.
        frames_seen: Number of published frames it appeared in as CONFIRMED.
    """
    track_id: int
    bbox: BoundingBox
    peak_confidence: float
    severity: Severity
    first_seen_seq: int
    last_seen_seq: int
    frames_seen: int = 1
    class_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "track_id": self.track_id,
            "bbox": list(self.bbox.as_tuple()),
            "peak_confidence": self.peak_confidence,
            "size": self.severity.size.value,
            "risk": self.severity.risk.value,
            "area": self.severity.area,
            "first_seen_seq": self.first_seen_seq,
            "last_seen_seq": self.last_seen_seq,
            "frames_seen": self.frames_seen,
            "class_name": self.class_name,
        }


class SessionAggregator:
    """
    Accumulates confirmed potholes across a session.

    Example:
        aggregator = SessionAggregator(config.severity)
        scheduler.add_callback(aggregator)
    """

    def __init__(self, cfg: Optional[SeverityConfig] = None):
        self.cfg = cfg or SeverityConfig()
        self._lock = threading.Lock()
        self.records: Dict[int, PotholeRecord] = {}
        self.frames_processed = 0
        self.frame_size: Optional[tuple] = None
        self.first_timestamp: Optional[float] = None
        self.last_timestamp: Optional[float] = None
        self.risk_observations: Dict[str, int] = {r.value: 0 for r in RiskLevel}

    def __call__(self, result: PipelineResult) -> None:
        self.update(result)

    def update(self, result: PipelineResult) -> None:
        with self._lock:
            self.frames_processed += 1
            self.frame_size = result.frame_size
            if self.first_timestamp is None:
                self.first_timestamp = result.timestamp
            self.last_timestamp = result.timestamp

            for track in result.tracks:
                if track.state is not TrackState.CONFIRMED:
                    continue
                severity = assess(track.bbox, self.cfg)
                self.risk_observations[severity.risk.value] += 1
                self._record(track, severity)

    def _record(self, track: TrackSnapshot, severity: Severity) -> None:
        record = self.records.get(track.track_id)
        if record is None:
            self.records[track.track_id] = PotholeRecord(
                track_id=track.track_id,
                bbox=track.bbox,
                peak_confidence=track.confidence,
                severity=severity,
                first_seen_seq=track.first_seen_seq,
                last_seen_seq=track.last_seen_seq,
                class_name=track.class_name,
            )
            return

        record.frames_seen += 1
        record.last_seen_seq = track.last_seen_seq
        record.peak_confidence = max(record.peak_confidence, track.confidence)
        if track.bbox.area > record.bbox.area:
            record.bbox = track.bbox
            record.severity = severity

    def potholes(self) -> List[PotholeRecord]:
        """Records in track-id order."""
        with self._lock:
            return [self.records[tid] for tid in sorted(self.records)]

    @property
    def duration_s(self) -> float:
        if self.first_timestamp is None or self.last_timestamp is None:
            return 0.0
        return self.last_timestamp - self.first_timestamp

    def size_counts(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in SizeCategory}
        for record in self.potholes():
            counts[record.severity.size.value] += 1
        return counts

    def risk_counts(self) -> Dict[str, int]:
        counts = {r.value: 0 for r in RiskLevel}
        for record in self.potholes():
            counts[record.severity.risk.value] += 1
        return counts

    def severity_rating(self) -> float:
        """Road condition rating 0-10 from per-frame medium/high risk observations."""
        with self._lock:
            medium = self.risk_observations[RiskLevel.MEDIUM.value]
            high = self.risk_observations[RiskLevel.HIGH.value]
            frames = self.frames_processed
        return min(10.0, (medium * 0.5 + high * 1.0) / max(1, frames) * 10)

    def summary(self) -> Dict[str, Any]:
        potholes = self.potholes()
        areas = [p.severity.area for p in potholes]
        return {
            "frames_processed": self.frames_processed,
            "duration_s": self.duration_s,
            "unique_potholes": len(potholes),
            "size_counts": self.size_counts(),
            "risk_counts": self.risk_counts(),
            "average_area": sum(areas) / len(areas) if areas else 0.0,
            "severity_rating": self.severity_rating(),
        }

    def reset(self) -> None:
        with self._lock:
            self.records.clear()
            self.frames_processed = 0
            self.frame_size = None
            self.first_timestamp = None
            self.last_timestamp = None
            self.risk_observations = {r.value: 0 for r in RiskLevel}
