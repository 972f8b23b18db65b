"""
Typed models for the pothole monitor.

Frames, detections, tracks, configuration, errors and pipeline results shared
by every stage of the frame inference pipeline.
"""

from .frame import Frame, PixelFormat
from .detection import BoundingBox, Detection, box_iou
from .track import TrackedObject, TrackSnapshot, TrackState
from .status import PipelineResult, PipelineStats, SessionEnded, SessionState
from .errors import (
    PipelineError,
    SourceUnavailable,
    ModelLoadError,
    InvalidFrame,
    InferenceTimeout,
    PostprocessDecodeError,
    EngineBusy,
    BufferPoolExhausted,
)
from .config import (
    Config,
    SourceConfig,
    ModelConfig,
    PostprocessConfig,
    TrackingConfig,
    SchedulerConfig,
    SeverityConfig,
)

__all__ = [
    # Frame
    "Frame",
    "PixelFormat",
    # Detection
    "BoundingBox",
    "Detection",
    "box_iou",
    # Tracking
    "TrackedObject",
    "TrackSnapshot",
    "TrackState",
    # Results
    "PipelineResult",
    "PipelineStats",
    "SessionEnded",
    "SessionState",
    # Errors
    "PipelineError",
    "SourceUnavailable",
    "ModelLoadError",
    "InvalidFrame",
    "InferenceTimeout",
    "PostprocessDecodeError",
    "EngineBusy",
    "BufferPoolExhausted",
    # Config
    "Config",
    "SourceConfig",
    "ModelConfig",
    "PostprocessConfig",
    "TrackingConfig",
    "SchedulerConfig",
    "SeverityConfig",
]
