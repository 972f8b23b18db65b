from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class StatusResponse(BaseModel):
    status: str = Field(..., description="running|degraded|offline|ended")
    alerts: list[str] = Field(default_factory=list)
    state: str = Field(..., description="Scheduler state: idle|running|paused|stopping|ended")
    source_id: str
    accelerated: bool
    last_frame_age_s: Optional[float] = Field(None, description="Seconds since the last processed frame")
    fps: float
    avg_latency_ms: float
    frames_processed: int
    frames_dropped_stale: int
    frames_skipped: int
    frames_dropped_live: int = 0
    errors_by_kind: Dict[str, int] = Field(default_factory=dict)
    unique_potholes: int
    ended_reason: Optional[str] = None
    error_kind: Optional[str] = None
    timestamp: float


class TrackResponse(BaseModel):
    track_id: int
    bbox: List[float] = Field(..., description="Frame-normalized [x, y, w, h]")
    confidence: float
    class_id: int
    class_name: Optional[str] = None
    state: str
    size: str
    risk: str
    first_seen_seq: int
    last_seen_seq: int
    hit_count: int


class TracksResponse(BaseModel):
    """Point-in-time view of the latest published frame."""
    frame_seq: Optional[int] = None
    timestamp: Optional[float] = None
    frame_size: Optional[List[int]] = None
    detection_count: int = 0
    latency_ms: float = 0.0
    tracks: List[TrackResponse] = Field(default_factory=list)


class PotholeResponse(BaseModel):
    track_id: int
    bbox: List[float]
    peak_confidence: float
    size: str
    risk: str
    area: float
    first_seen_seq: int
    last_seen_seq: int
    frames_seen: int
    class_name: Optional[str] = None


class SummaryResponse(BaseModel):
    frames_processed: int
    duration_s: float
    unique_potholes: int
    size_counts: Dict[str, int]
    risk_counts: Dict[str, int]
    average_area: float = Field(..., description="Mean frame-normalized box area")
    severity_rating: float = Field(..., description="Road condition rating 0-10")
    potholes: List[PotholeResponse] = Field(default_factory=list)
