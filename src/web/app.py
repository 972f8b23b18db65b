"""
FastAPI application factory for the pothole monitor.

Routes:
- /api/status  -> pipeline lifecycle, throughput and error counters
- /api/tracks  -> tracks of the latest published frame
- /api/summary -> de-duplicated session summary and severity rating

The API is read-only: it only observes the scheduler's latest-result cell
and the session aggregator.
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from analytics.session import SessionAggregator
from pipeline.scheduler import PipelineScheduler
from .routes import api


def create_app(
    scheduler: Optional[PipelineScheduler] = None,
    aggregator: Optional[SessionAggregator] = None,
) -> FastAPI:
    """Create the FastAPI app and attach the running pipeline."""
    app = FastAPI(
        title="Pothole Monitor",
        version="0.1.0",
        description="Near real-time pothole detection results",
    )

    # CORS for a locally served dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.state.scheduler = scheduler
    app.state.aggregator = aggregator

    app.include_router(api.router, prefix="/api")
    return app
