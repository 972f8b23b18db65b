"""
Observation layer for pluggable video/image sources.

This layer abstracts the source of frames (camera, video file, remote stream)
from the inference pipeline. Each source implements the FrameSource interface
and returns Frame objects.
"""

from models.config import SourceConfig

from .base import FrameSource, FrameSourceConfig
from .live_source import LiveFrameSource
from .opencv_source import OpenCVSource, OpenCVSourceConfig


def create_source_from_config(cfg: SourceConfig, source_id: str = "camera") -> FrameSource:
    """
    Build the frame source described by the source config.

    Live devices (cameras, RTSP) are wrapped in a drop-oldest LiveFrameSource
    unless ``live`` is disabled; video files are read synchronously so every
    strided frame is analysed.
    """
    if cfg.backend != "opencv":
        raise ValueError(f"Unsupported source backend: {cfg.backend}")
    source = OpenCVSource(OpenCVSourceConfig.from_source_config(cfg, source_id=source_id))
    if cfg.live and source.is_live:
        return LiveFrameSource(source, depth=cfg.buffer_depth)
    return source


__all__ = [
    "FrameSource",
    "FrameSourceConfig",
    "LiveFrameSource",
    "OpenCVSource",
    "OpenCVSourceConfig",
    "create_source_from_config",
]
