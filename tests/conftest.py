"""
Pytest configuration and shared fixtures.
"""

import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
source:
  backend: "opencv"
  device_id: 0
  resolution: [640, 480]
  fps: 30

model:
  path: "models/pothole.torchscript"
  runtime: "torchscript"
  input_size: [640, 640]
  labels: ["pothole"]

tracking:
  confirmation_hits: 3

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "source": {
            "backend": "opencv",
            "device_id": 0,
            "resolution": [1280, 720],
            "fps": 30,
            "frame_stride": 1,
        },
        "model": {
            "path": "models/pothole.torchscript",
            "runtime": "torchscript",
            "device": "cpu",
            "input_size": [640, 640],
            "output_layout": "yolov8",
            "labels": ["pothole"],
        },
        "postprocess": {
            "confidence_threshold": 0.25,
            "iou_threshold": 0.45,
        },
        "tracking": {
            "match_iou_threshold": 0.3,
            "confirmation_hits": 3,
            "miss_tolerance": 2,
            "grace_period": 5,
        },
        "scheduler": {
            "max_frame_age_s": 0.5,
            "buffer_pool_size": 2,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }
