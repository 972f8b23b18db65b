from __future__ import annotations

import time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from analytics.session import SessionAggregator
from analytics.severity import assess
from pipeline.scheduler import PipelineScheduler
from ..api_models import PotholeResponse, StatusResponse, SummaryResponse, TrackResponse, TracksResponse

router = APIRouter()


def get_scheduler(request: Request) -> PipelineScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Pipeline not attached")
    return scheduler


def get_aggregator(request: Request) -> SessionAggregator:
    aggregator = getattr(request.app.state, "aggregator", None)
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Session aggregator not attached")
    return aggregator


def _derive_status(state: str, last_frame_age: Optional[float], error_kind: Optional[str]):
    """
    Lightweight status classifier used by /api/status.
    Thresholds: >10s since last frame => offline; >2s => degraded.
    """
    alerts: List[str] = []
    if state == "ended":
        if error_kind:
            alerts.append(error_kind)
        return "ended", alerts
    if state == "paused":
        return "degraded", ["paused"]

    if last_frame_age is None or last_frame_age > 10:
        alerts.append("source_offline")
        return "offline", alerts
    if last_frame_age > 2:
        alerts.append("source_stale")
        return "degraded", alerts
    return "running", alerts


@router.get("/status", response_model=StatusResponse)
def status(scheduler: PipelineScheduler = Depends(get_scheduler)):
    """
    Pipeline status for the UI: lifecycle state, throughput and error counters.
    """
    now = time.time()
    info = scheduler.status()
    stats = info["stats"]
    last_ts = stats["last_frame_ts"]
    last_frame_age = now - last_ts if last_ts is not None else None
    level, alerts = _derive_status(info["state"], last_frame_age, info["error_kind"])

    return StatusResponse(
        status=level,
        alerts=alerts,
        state=info["state"],
        source_id=info["source_id"],
        accelerated=info["accelerated"],
        last_frame_age_s=last_frame_age,
        fps=stats["fps"],
        avg_latency_ms=stats["avg_latency_ms"],
        frames_processed=stats["frames_processed"],
        frames_dropped_stale=stats["frames_dropped_stale"],
        frames_skipped=stats["frames_skipped"],
        frames_dropped_live=info["frames_dropped_live"],
        errors_by_kind=stats["errors_by_kind"],
        unique_potholes=info["unique_potholes"],
        ended_reason=info["ended_reason"],
        error_kind=info["error_kind"],
        timestamp=now,
    )


@router.get("/tracks", response_model=TracksResponse)
def tracks(request: Request, scheduler: PipelineScheduler = Depends(get_scheduler)):
    """Tracks of the most recently published frame (empty before the first)."""
    result = scheduler.latest()
    if result is None:
        return TracksResponse()

    aggregator = getattr(request.app.state, "aggregator", None)
    severity_cfg = aggregator.cfg if aggregator is not None else None
    items = []
    for track in result.tracks:
        severity = assess(track.bbox, severity_cfg)
        items.append(TrackResponse(
            track_id=track.track_id,
            bbox=list(track.bbox.as_tuple()),
            confidence=track.confidence,
            class_id=track.class_id,
            class_name=track.class_name,
            state=track.state.value,
            size=severity.size.value,
            risk=severity.risk.value,
            first_seen_seq=track.first_seen_seq,
            last_seen_seq=track.last_seen_seq,
            hit_count=track.hit_count,
        ))

    return TracksResponse(
        frame_seq=result.frame_seq,
        timestamp=result.timestamp,
        frame_size=list(result.frame_size),
        detection_count=result.detection_count,
        latency_ms=result.latency_ms,
        tracks=items,
    )


@router.get("/summary", response_model=SummaryResponse)
def summary(aggregator: SessionAggregator = Depends(get_aggregator)):
    """De-duplicated session summary with the road severity rating."""
    data = aggregator.summary()
    return SummaryResponse(
        **data,
        potholes=[PotholeResponse(**p.to_dict()) for p in aggregator.potholes()],
    )
