"""
Typed configuration models matching the YAML config structure.

All config objects are frozen: the pipeline receives one immutable Config at
construction and never reads global or environment state afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

# Reference display size used by the original size thresholds (pixels).
REFERENCE_DISPLAY_SIZE = (1020, 500)
_REFERENCE_AREA = REFERENCE_DISPLAY_SIZE[0] * REFERENCE_DISPLAY_SIZE[1]


def _tuple_or_none(value) -> Optional[tuple]:
    return tuple(value) if value is not None else None


@dataclass(frozen=True)
class SourceConfig:
    """Frame source configuration."""
    backend: str = "opencv"
    device_id: Union[int, str] = 0
    secrets_file: Optional[str] = None
    resolution: Optional[Tuple[int, int]] = None
    fps: Optional[int] = None
    frame_stride: int = 1
    live: bool = True
    buffer_depth: int = 1
    max_retries: int = 3
    swap_rb: bool = False
    rotate: int = 0
    flip_horizontal: bool = False
    flip_vertical: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SourceConfig":
        """Adapter: Create from config dictionary."""
        return cls(
            backend=d.get("backend", "opencv"),
            device_id=d.get("device_id", 0),
            secrets_file=d.get("secrets_file"),
            resolution=_tuple_or_none(d.get("resolution")),
            fps=d.get("fps"),
            frame_stride=d.get("frame_stride", 1),
            live=d.get("live", True),
            buffer_depth=d.get("buffer_depth", 1),
            max_retries=d.get("max_retries", 3),
            swap_rb=d.get("swap_rb", False),
            rotate=d.get("rotate", 0) or 0,
            flip_horizontal=d.get("flip_horizontal", False),
            flip_vertical=d.get("flip_vertical", False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "device_id": self.device_id,
            "secrets_file": self.secrets_file,
            "resolution": list(self.resolution) if self.resolution else None,
            "fps": self.fps,
            "frame_stride": self.frame_stride,
            "live": self.live,
            "buffer_depth": self.buffer_depth,
            "max_retries": self.max_retries,
            "swap_rb": self.swap_rb,
            "rotate": self.rotate,
            "flip_horizontal": self.flip_horizontal,
            "flip_vertical": self.flip_vertical,
        }


@dataclass(frozen=True)
class ModelConfig:
    """
    Model artifact and its declared contract.

    Attributes:
        path: Path to the model file (.torchscript/.pt or .onnx).
        runtime: "torchscript" or "onnx".
        device: Execution device ("cpu", "cuda", "mps").
        input_size: Model input as (width, height).
        output_layout: "yolov8" (4+nc rows) or "yolov5" (5+nc columns, objectness).
        labels: Class label table, indexed by class id.
        mean: Optional per-channel normalization mean (RGB, 0-1 scale).
        std: Optional per-channel normalization std (RGB, 0-1 scale).
        inference_timeout_s: Budget for one forward pass.
    """
    path: str = ""
    runtime: str = "torchscript"
    device: str = "cpu"
    input_size: Tuple[int, int] = (640, 640)
    output_layout: str = "yolov8"
    labels: Tuple[str, ...] = ("pothole",)
    mean: Optional[Tuple[float, float, float]] = None
    std: Optional[Tuple[float, float, float]] = None
    inference_timeout_s: float = 1.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModelConfig":
        return cls(
            path=d.get("path", ""),
            runtime=d.get("runtime", "torchscript"),
            device=d.get("device", "cpu"),
            input_size=tuple(d.get("input_size", (640, 640))),
            output_layout=d.get("output_layout", "yolov8"),
            labels=tuple(d.get("labels", ("pothole",))),
            mean=_tuple_or_none(d.get("mean")),
            std=_tuple_or_none(d.get("std")),
            inference_timeout_s=float(d.get("inference_timeout_s", 1.0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "path": self.path,
            "runtime": self.runtime,
            "device": self.device,
            "input_size": list(self.input_size),
            "output_layout": self.output_layout,
            "labels": list(self.labels),
            "inference_timeout_s": self.inference_timeout_s,
        }
        if self.mean is not None:
            d["mean"] = list(self.mean)
        if self.std is not None:
            d["std"] = list(self.std)
        return d


@dataclass(frozen=True)
class PostprocessConfig:
    """Thresholds for decoding raw model output."""
    confidence_threshold: float = 0.25
    iou_threshold: float = 0.45
    max_detections: int = 100

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PostprocessConfig":
        return cls(
            confidence_threshold=float(d.get("confidence_threshold", 0.25)),
            iou_threshold=float(d.get("iou_threshold", 0.45)),
            max_detections=int(d.get("max_detections", 100)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence_threshold": self.confidence_threshold,
            "iou_threshold": self.iou_threshold,
            "max_detections": self.max_detections,
        }


@dataclass(frozen=True)
class TrackingConfig:
    """Tracking configuration."""
    match_iou_threshold: float = 0.3
    confirmation_hits: int = 3
    miss_tolerance: int = 2
    grace_period: int = 5
    smoothing_alpha: float = 0.5
    report_lost: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TrackingConfig":
        return cls(
            match_iou_threshold=float(d.get("match_iou_threshold", 0.3)),
            confirmation_hits=int(d.get("confirmation_hits", 3)),
            miss_tolerance=int(d.get("miss_tolerance", 2)),
            grace_period=int(d.get("grace_period", 5)),
            smoothing_alpha=float(d.get("smoothing_alpha", 0.5)),
            report_lost=bool(d.get("report_lost", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_iou_threshold": self.match_iou_threshold,
            "confirmation_hits": self.confirmation_hits,
            "miss_tolerance": self.miss_tolerance,
            "grace_period": self.grace_period,
            "smoothing_alpha": self.smoothing_alpha,
            "report_lost": self.report_lost,
        }


@dataclass(frozen=True)
class SchedulerConfig:
    """
    Scheduler execution policy.

    Attributes:
        max_frame_age_s: Frames older than this when picked up are dropped as
            stale. None disables the check (e.g. offline file analysis).
        buffer_pool_size: Number of pooled input tensors (pipeline depth).
        stats_log_interval: Seconds between status log messages.
        stop_timeout_s: How long stop() waits for the worker to exit.
    """
    max_frame_age_s: Optional[float] = 0.5
    buffer_pool_size: int = 2
    stats_log_interval: float = 60.0
    stop_timeout_s: float = 5.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SchedulerConfig":
        max_age = d.get("max_frame_age_s", 0.5)
        return cls(
            max_frame_age_s=float(max_age) if max_age is not None else None,
            buffer_pool_size=int(d.get("buffer_pool_size", 2)),
            stats_log_interval=float(d.get("stats_log_interval", 60.0)),
            stop_timeout_s=float(d.get("stop_timeout_s", 5.0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_frame_age_s": self.max_frame_age_s,
            "buffer_pool_size": self.buffer_pool_size,
            "stats_log_interval": self.stats_log_interval,
            "stop_timeout_s": self.stop_timeout_s,
        }


@dataclass(frozen=True)
class SeverityConfig:
    """
    Pothole size/risk classification.

    Areas are fractions of the frame area. The defaults reproduce 5000 and
    15000 square pixels on a 1020x500 display frame.
    """
    small_area: float = 5000 / _REFERENCE_AREA
    large_area: float = 15000 / _REFERENCE_AREA
    hotspot_radius_px: float = 50.0
    reference_size: Tuple[int, int] = REFERENCE_DISPLAY_SIZE

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SeverityConfig":
        return cls(
            small_area=float(d.get("small_area", 5000 / _REFERENCE_AREA)),
            large_area=float(d.get("large_area", 15000 / _REFERENCE_AREA)),
            hotspot_radius_px=float(d.get("hotspot_radius_px", 50.0)),
            reference_size=tuple(d.get("reference_size", REFERENCE_DISPLAY_SIZE)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "small_area": self.small_area,
            "large_area": self.large_area,
            "hotspot_radius_px": self.hotspot_radius_px,
            "reference_size": list(self.reference_size),
        }


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    source: SourceConfig = field(default_factory=SourceConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    postprocess: PostprocessConfig = field(default_factory=PostprocessConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    severity: SeverityConfig = field(default_factory=SeverityConfig)
    report_dir: Optional[str] = None
    log_path: str = "logs/pothole_monitor.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        return cls(
            source=SourceConfig.from_dict(d.get("source", {}) or {}),
            model=ModelConfig.from_dict(d.get("model", {}) or {}),
            postprocess=PostprocessConfig.from_dict(d.get("postprocess", {}) or {}),
            tracking=TrackingConfig.from_dict(d.get("tracking", {}) or {}),
            scheduler=SchedulerConfig.from_dict(d.get("scheduler", {}) or {}),
            severity=SeverityConfig.from_dict(d.get("severity", {}) or {}),
            report_dir=d.get("report_dir"),
            log_path=d.get("log_path", "logs/pothole_monitor.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary (for saving or logging the effective config)."""
        d: Dict[str, Any] = {
            "source": self.source.to_dict(),
            "model": self.model.to_dict(),
            "postprocess": self.postprocess.to_dict(),
            "tracking": self.tracking.to_dict(),
            "scheduler": self.scheduler.to_dict(),
            "severity": self.severity.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }
        if self.report_dir:
            d["report_dir"] = self.report_dir
        return d
