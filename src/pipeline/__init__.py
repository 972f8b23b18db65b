"""
Pipeline module for the pothole monitor.

The pipeline orchestrates the full processing flow:
- Frame acquisition from a FrameSource
- Preprocessing, inference and decoding
- Tracking and publication of the latest result
"""

from .exchange import LatestResultCell
from .scheduler import PipelineScheduler, build_pipeline

__all__ = [
    "LatestResultCell",
    "PipelineScheduler",
    "build_pipeline",
]
