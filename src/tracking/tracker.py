"""
Pothole tracking across video frames.

This module implements an IoU-based tracker that turns noisy per-frame
detections into temporally stable potholes. Each track moves through
TENTATIVE -> CONFIRMED -> LOST -> REMOVED:

- a new detection starts a TENTATIVE track
- enough consecutive-ish hits confirm it (suppresses single-frame flicker)
- a confirmed track that stops matching is LOST, kept for a grace period so a
  briefly occluded pothole keeps its id
- after the grace period it is REMOVED and purged

Severity and de-duplicated counts are computed from the tracker's output, not
here.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from models.config import TrackingConfig
from models.detection import BoundingBox, Detection, box_iou
from models.track import TrackedObject, TrackSnapshot, TrackState


def _ema_box(old: BoundingBox, new: BoundingBox, alpha: float) -> BoundingBox:
    return BoundingBox(
        x=alpha * new.x + (1 - alpha) * old.x,
        y=alpha * new.y + (1 - alpha) * old.y,
        w=alpha * new.w + (1 - alpha) * old.w,
        h=alpha * new.h + (1 - alpha) * old.h,
    )


class PotholeTracker:
    """
    Tracks potholes across frames using greedy IoU matching.

    This tracker is responsible for:
    - Matching detections to live tracks of the same class (highest IoU first)
    - Smoothing box and confidence with an exponential moving average
    - Driving the track lifecycle and purging removed tracks

    Example:
        tracker = PotholeTracker(TrackingConfig(confirmation_hits=3))
        for frame_seq, detections in stream:
            confirmed = tracker.update(detections, frame_seq)
    """

    def __init__(self, config: Optional[TrackingConfig] = None):
        """
        Initialize the pothole tracker.

        Args:
            config: Matching threshold, confirmation and removal policy.
        """
        self.config = config or TrackingConfig()
        if not 0.0 < self.config.smoothing_alpha <= 1.0:
            raise ValueError("smoothing_alpha must be in (0, 1]")
        if self.config.confirmation_hits < 1:
            raise ValueError("confirmation_hits must be >= 1")

        self.tracks: Dict[int, TrackedObject] = {}
        self.next_track_id = 1
        self.unique_confirmed = 0
        self.last_frame_seq: Optional[int] = None

        logging.info(
            f"Pothole tracker initialized (match_iou={self.config.match_iou_threshold}, "
            f"confirm={self.config.confirmation_hits}, miss_tolerance={self.config.miss_tolerance}, "
            f"grace={self.config.grace_period})"
        )

    def update(self, detections: Sequence[Detection], frame_seq: int) -> List[TrackSnapshot]:
        """
        Update tracker with the detections of one frame.

        Args:
            detections: Decoded detections for the frame (any order).
            frame_seq: Sequence id of the frame.

        Returns:
            Snapshots of CONFIRMED tracks (plus LOST ones when report_lost is
            set), ordered by track id.
        """
        matches = self._match(detections)
        matched_tracks = set()
        matched_detections = set()

        for track_id, det_idx in matches:
            self._apply_hit(self.tracks[track_id], detections[det_idx], frame_seq)
            matched_tracks.add(track_id)
            matched_detections.add(det_idx)

        for track_id, track in self.tracks.items():
            if track_id not in matched_tracks:
                self._apply_miss(track)

        for idx, detection in enumerate(detections):
            if idx not in matched_detections:
                self._add_track(detection, frame_seq)

        self._remove_dead_tracks()
        self.last_frame_seq = frame_seq
        return self.get_visible_tracks()

    def _match(self, detections: Sequence[Detection]) -> List[Tuple[int, int]]:
        """Greedy matching: highest IoU first, ties by lower track id then lower detection index."""
        threshold = self.config.match_iou_threshold
        candidates: List[Tuple[float, int, int]] = []
        for track_id, track in self.tracks.items():
            track_box = track.smoothed_box.as_xyxy()
            for idx, detection in enumerate(detections):
                if detection.class_id != track.class_id:
                    continue
                iou = box_iou(track_box, detection.bbox.as_xyxy())
                if iou >= threshold and iou > 0.0:
                    candidates.append((iou, track_id, idx))

        candidates.sort(key=lambda c: (-c[0], c[1], c[2]))

        used_tracks = set()
        used_detections = set()
        matches = []
        for _, track_id, idx in candidates:
            if track_id in used_tracks or idx in used_detections:
                continue
            used_tracks.add(track_id)
            used_detections.add(idx)
            matches.append((track_id, idx))
        return matches

    def _apply_hit(self, track: TrackedObject, detection: Detection, frame_seq: int) -> None:
        alpha = self.config.smoothing_alpha
        track.smoothed_box = _ema_box(track.smoothed_box, detection.bbox, alpha)
        track.confidence = alpha * detection.confidence + (1 - alpha) * track.confidence
        track.hit_count += 1
        track.miss_count = 0
        track.lost_frames = 0
        track.last_seen_seq = frame_seq

        if track.state is TrackState.LOST:
            track.state = TrackState.CONFIRMED
            logging.debug(f"Track {track.track_id} recovered")
        elif track.state is TrackState.TENTATIVE and track.hit_count >= self.config.confirmation_hits:
            self._confirm(track)

    def _apply_miss(self, track: TrackedObject) -> None:
        tolerance = self.config.miss_tolerance
        track.miss_count += 1

        if track.state is TrackState.TENTATIVE:
            if track.miss_count > tolerance:
                track.state = TrackState.REMOVED
            return

        if track.state is TrackState.CONFIRMED and track.miss_count > tolerance:
            track.state = TrackState.LOST
            logging.debug(f"Track {track.track_id} lost")

        if track.state is TrackState.LOST:
            track.lost_frames += 1
            if track.miss_count > tolerance + self.config.grace_period:
                track.state = TrackState.REMOVED

    def _add_track(self, detection: Detection, frame_seq: int) -> None:
        track = TrackedObject(
            track_id=self.next_track_id,
            smoothed_box=detection.bbox,
            confidence=detection.confidence,
            class_id=detection.class_id,
            first_seen_seq=frame_seq,
            last_seen_seq=frame_seq,
            class_name=detection.class_name,
        )
        self.tracks[track.track_id] = track
        self.next_track_id += 1
        if self.config.confirmation_hits <= 1:
            self._confirm(track)

    def _confirm(self, track: TrackedObject) -> None:
        track.state = TrackState.CONFIRMED
        self.unique_confirmed += 1
        logging.debug(f"Track {track.track_id} confirmed after {track.hit_count} hits")

    def _remove_dead_tracks(self) -> None:
        """Purge REMOVED tracks so they can never be matched again."""
        to_remove = [tid for tid, t in self.tracks.items() if t.state is TrackState.REMOVED]
        for track_id in to_remove:
            del self.tracks[track_id]

    def get_visible_tracks(self) -> List[TrackSnapshot]:
        """Snapshots of tracks a consumer should see, in track-id order."""
        visible = (TrackState.CONFIRMED, TrackState.LOST) if self.config.report_lost else (TrackState.CONFIRMED,)
        return [
            self.tracks[tid].snapshot()
            for tid in sorted(self.tracks)
            if self.tracks[tid].state in visible
        ]

    def get_all_tracks(self) -> List[TrackSnapshot]:
        """Snapshots of every live track, including tentative and lost ones."""
        return [self.tracks[tid].snapshot() for tid in sorted(self.tracks)]

    def reset(self) -> None:
        """Clear all state for a new session."""
        self.tracks.clear()
        self.next_track_id = 1
        self.unique_confirmed = 0
        self.last_frame_seq = None
