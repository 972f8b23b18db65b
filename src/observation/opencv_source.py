"""
OpenCV-based frame source.

One class covers the three inputs a road survey uses:
- USB webcams / dashcams (device_id as int, e.g., 0)
- RTSP/IP cameras (device_id as str URL)
- Recorded road video files (device_id as file path)

Files end cleanly at the last frame. Devices that stop delivering are
reconnected with exponential backoff; when that fails the source raises
SourceUnavailable and the session ends.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

import cv2
import numpy as np

from models.config import SourceConfig
from models.errors import SourceUnavailable
from models.frame import Frame
from .base import FrameSource, FrameSourceConfig
from .rtsp_utils import is_rtsp_url, sanitize_url

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}
MAX_BACKOFF_S = 10


@dataclass(frozen=True)
class OpenCVSourceConfig(FrameSourceConfig):
    """
    Settings for cv2.VideoCapture based sources.

    Attributes:
        device_id: Camera index (int), RTSP URL (str), or file path (str).
        frame_stride: Deliver every Nth decoded frame (1 = every frame).
        rtsp_transport: "tcp" or "udp" for RTSP streams.
        buffer_size: Driver-side capture buffer for USB cameras.
        max_retries: Connection attempts before the device counts as gone.
        swap_rb / rotate / flip_horizontal / flip_vertical: per-frame fixes
            for cameras mounted sideways or delivering RGB.
    """
    device_id: Union[int, str] = 0
    frame_stride: int = 1
    rtsp_transport: str = "tcp"
    buffer_size: int = 1
    max_retries: int = 3
    swap_rb: bool = False
    rotate: int = 0
    flip_horizontal: bool = False
    flip_vertical: bool = False

    @classmethod
    def from_source_config(cls, cfg: SourceConfig, source_id: str = "camera") -> "OpenCVSourceConfig":
        return cls(
            source_id=source_id,
            resolution=cfg.resolution,
            fps=cfg.fps,
            device_id=cfg.device_id,
            frame_stride=max(1, cfg.frame_stride),
            max_retries=cfg.max_retries,
            swap_rb=cfg.swap_rb,
            rotate=cfg.rotate,
            flip_horizontal=cfg.flip_horizontal,
            flip_vertical=cfg.flip_vertical,
        )


def _build_transforms(cfg: OpenCVSourceConfig) -> List[Callable[[np.ndarray], np.ndarray]]:
    """Resolve the configured image fixes once, in application order."""
    steps: List[Callable[[np.ndarray], np.ndarray]] = []
    if cfg.rotate in _ROTATIONS:
        code = _ROTATIONS[cfg.rotate]
        steps.append(lambda img: cv2.rotate(img, code))

    # cv2.flip codes: 1 horizontal, 0 vertical, -1 both
    if cfg.flip_horizontal and cfg.flip_vertical:
        steps.append(lambda img: cv2.flip(img, -1))
    elif cfg.flip_horizontal:
        steps.append(lambda img: cv2.flip(img, 1))
    elif cfg.flip_vertical:
        steps.append(lambda img: cv2.flip(img, 0))

    if cfg.swap_rb:
        steps.append(lambda img: np.ascontiguousarray(img[..., ::-1]))
    return steps


class OpenCVSource(FrameSource):
    """
    cv2.VideoCapture wrapped as a FrameSource.

    Example:
        config = OpenCVSourceConfig(device_id="survey.mp4", frame_stride=3)
        with OpenCVSource(config) as source:
            for frame in source:
                process(frame.image)
    """

    def __init__(self, config: OpenCVSourceConfig):
        super().__init__(config)
        self.cfg = config
        self._cap: Optional[cv2.VideoCapture] = None
        self._transforms = _build_transforms(config)
        self._read_failures = 0
        self._delivered = 0

    @property
    def device_id(self) -> Union[int, str]:
        return self.cfg.device_id

    @property
    def is_rtsp(self) -> bool:
        return is_rtsp_url(self.device_id)

    @property
    def is_file(self) -> bool:
        device = self.device_id
        return isinstance(device, str) and not self.is_rtsp and os.path.exists(device)

    @property
    def is_live(self) -> bool:
        return not self.is_file

    def open(self) -> None:
        if self._is_open:
            return
        if isinstance(self.device_id, str) and not (self.is_rtsp or self.is_file):
            raise SourceUnavailable(f"Video file not found: {self.device_id}")

        self._connect()
        self._is_open = True
        self._seq = 0
        self._delivered = 0
        logging.info(
            f"OpenCVSource opened: source_id={self.source_id}, "
            f"device={sanitize_url(self.device_id)}, stride={self.cfg.frame_stride}"
        )

    def _connect(self) -> None:
        """Open the capture, retrying with exponential backoff up to max_retries attempts."""
        self._release_capture()
        if self.is_rtsp:
            os.environ["OPENCV_FFMPEG_CAPTURE_OPTIONS"] = f"rtsp_transport;{self.cfg.rtsp_transport}"

        attempts = max(1, self.cfg.max_retries)
        for attempt in range(1, attempts + 1):
            cap = cv2.VideoCapture(self.device_id)
            if cap.isOpened():
                self._cap = cap
                self._configure_camera()
                self._read_failures = 0
                return
            cap.release()
            if attempt < attempts:
                delay = min(2 ** attempt, MAX_BACKOFF_S)
                logging.warning(
                    f"Could not open {sanitize_url(self.device_id)} "
                    f"(attempt {attempt}/{attempts}), retrying in {delay}s"
                )
                time.sleep(delay)

        raise SourceUnavailable(
            f"Failed to open device {sanitize_url(self.device_id)} after {attempts} attempts"
        )

    def _configure_camera(self) -> None:
        # Resolution/fps requests only make sense for local cameras
        if not isinstance(self.device_id, int) or not self.cfg.resolution:
            return
        width, height = self.cfg.resolution
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        if self.cfg.fps:
            self._cap.set(cv2.CAP_PROP_FPS, self.cfg.fps)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, self.cfg.buffer_size)
        logging.info(
            f"Camera negotiated {self._cap.get(cv2.CAP_PROP_FRAME_WIDTH):.0f}x"
            f"{self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT):.0f} @ {self._cap.get(cv2.CAP_PROP_FPS):.1f} fps"
        )

    def _next_image(self) -> Optional[np.ndarray]:
        """Decode the next image to deliver; frames between strides are only grabbed."""
        if self._delivered:
            for _ in range(self.cfg.frame_stride - 1):
                if not self._cap.grab():
                    return None
        ok, image = self._cap.read()
        if not ok or image is None:
            return None
        self._delivered += 1
        return image

    def read(self) -> Optional[Frame]:
        if not self._is_open or self._cap is None:
            return None

        image = self._next_image()
        if image is None:
            if self.is_file:
                logging.info(f"End of video: {self.device_id}")
                return None
            image = self._recover()
        else:
            self._read_failures = 0
        return self._make_frame(self._apply_transforms(image))

    def _recover(self) -> np.ndarray:
        """
        Reconnect a device that stopped delivering; raise SourceUnavailable if that fails.

        _read_failures counts reads that needed a reconnect since the last
        normal read, so a device that only ever yields one frame per
        reconnect is given up after max_retries of them.
        """
        self._read_failures += 1
        if self._read_failures > self.cfg.max_retries:
            raise SourceUnavailable(
                f"Too many consecutive read failures from {sanitize_url(self.device_id)}"
            )
        logging.warning(
            f"No frame from {sanitize_url(self.device_id)} "
            f"(failure {self._read_failures}), reconnecting"
        )
        failures = self._read_failures
        self._connect()
        self._read_failures = failures
        image = self._next_image()
        if image is None:
            raise SourceUnavailable(
                f"Device {sanitize_url(self.device_id)} returned no frames after reconnect"
            )
        return image

    def _apply_transforms(self, image: np.ndarray) -> np.ndarray:
        for step in self._transforms:
            image = step(image)
        return image

    def _release_capture(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def close(self) -> None:
        self._release_capture()
        if self._is_open:
            logging.info(f"OpenCVSource closed: source_id={self.source_id}")
        self._is_open = False
