"""
Pothole Monitor: frame inference pipeline entry point.

Reads a camera or a recorded road video, detects and tracks potholes with an
on-device model, optionally serves the read-only API and writes a session
report when the stream ends.

Usage:
    python src/main.py --config config/config.yaml --source road.mp4 --report output/reports

Arguments:
    --config: Path to configuration file
    --source: Camera index, RTSP URL or video file (overrides source.device_id)
    --model: Model artifact path (overrides model.path)
    --report: Directory for the session report (overrides report_dir)
    --serve: Serve the read-only API on this port
    --log-level: Override log_level
"""

import argparse
import logging
import os
import sys
import threading
from typing import Any, Dict, Optional, Tuple

import uvicorn
import yaml

from analytics.session import SessionAggregator
from models.config import Config
from observation.rtsp_utils import inject_rtsp_credentials, sanitize_url
from ops.logging import VALID_LOG_LEVELS, setup_logging
from pipeline.scheduler import build_pipeline
from reporting.report import write_report
from web.app import create_app

SUPPORTED_RUNTIMES = ("torchscript", "onnx")
SUPPORTED_LAYOUTS = ("yolov8", "yolov5")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        base_path = os.path.join(os.path.dirname(config_path), "default.yaml")
        base_cfg: Dict[str, Any] = {}
        if os.path.exists(base_path):
            with open(base_path, "r") as f:
                base_cfg = yaml.safe_load(f) or {}

        local_overrides_path = os.path.join(os.path.dirname(config_path), "config.yaml")
        local_cfg: Dict[str, Any] = {}
        if os.path.exists(local_overrides_path):
            with open(local_overrides_path, "r") as f:
                local_cfg = yaml.safe_load(f) or {}

        merged = _deep_merge(base_cfg, local_cfg)

        # Finally apply explicit config_path if it's not the local override file itself
        if os.path.exists(config_path) and os.path.abspath(config_path) != os.path.abspath(local_overrides_path):
            with open(config_path, "r") as f:
                explicit_cfg = yaml.safe_load(f) or {}
            merged = _deep_merge(merged, explicit_cfg)

        return merged
    except Exception as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def _is_fraction(value: Any) -> bool:
    return isinstance(value, (int, float)) and 0 <= value <= 1


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration file structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    required_sections = ['source', 'model', 'log_path', 'log_level']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    # Validate source settings
    source = config.get('source') or {}
    if 'device_id' not in source:
        return False, "Missing source.device_id"
    if not isinstance(source['device_id'], (int, str)):
        return False, "source.device_id must be an integer (index) or string (URL/path)"
    if isinstance(source['device_id'], int) and source['device_id'] < 0:
        return False, "source.device_id integer must be non-negative"
    if source.get('backend', 'opencv') != 'opencv':
        return False, "source.backend must be: opencv"

    resolution = source.get('resolution')
    if resolution is not None:
        if not isinstance(resolution, list) or len(resolution) != 2:
            return False, "source.resolution must be a list of [width, height]"
        if not all(isinstance(x, int) and x > 0 for x in resolution):
            return False, "source.resolution values must be positive integers"
    fps = source.get('fps')
    if fps is not None and (not isinstance(fps, int) or fps <= 0):
        return False, "source.fps must be a positive integer"
    stride = source.get('frame_stride', 1)
    if not isinstance(stride, int) or stride < 1:
        return False, "source.frame_stride must be an integer >= 1"
    depth = source.get('buffer_depth', 1)
    if not isinstance(depth, int) or depth < 1:
        return False, "source.buffer_depth must be an integer >= 1"
    if source.get('rotate', 0) not in (0, 90, 180, 270, None):
        return False, "source.rotate must be one of: 0, 90, 180, 270"

    # Validate model settings
    model = config.get('model') or {}
    if model.get('runtime', 'torchscript') not in SUPPORTED_RUNTIMES:
        return False, f"model.runtime must be one of: {', '.join(SUPPORTED_RUNTIMES)}"
    if model.get('output_layout', 'yolov8') not in SUPPORTED_LAYOUTS:
        return False, f"model.output_layout must be one of: {', '.join(SUPPORTED_LAYOUTS)}"
    input_size = model.get('input_size', [640, 640])
    if not isinstance(input_size, list) or len(input_size) != 2 or not all(
        isinstance(x, int) and x > 0 for x in input_size
    ):
        return False, "model.input_size must be a list of two positive integers"
    labels = model.get('labels', ['pothole'])
    if not isinstance(labels, list) or not labels:
        return False, "model.labels must be a non-empty list"
    for key in ('mean', 'std'):
        if model.get(key) is not None and (not isinstance(model[key], list) or len(model[key]) != 3):
            return False, f"model.{key} must be a list of 3 numbers"
    if model.get('std') is not None and any(s == 0 for s in model['std']):
        return False, "model.std values must be non-zero"

    # Optional postprocess settings
    post = config.get('postprocess') or {}
    for key in ('confidence_threshold', 'iou_threshold'):
        if key in post and not _is_fraction(post[key]):
            return False, f"postprocess.{key} must be between 0 and 1"
    if 'max_detections' in post and (not isinstance(post['max_detections'], int) or post['max_detections'] <= 0):
        return False, "postprocess.max_detections must be a positive integer"

    # Optional tracking settings (used by PotholeTracker)
    tracking = config.get('tracking') or {}
    if 'match_iou_threshold' in tracking:
        iou = tracking['match_iou_threshold']
        if not isinstance(iou, (int, float)) or not (0 < iou <= 1):
            return False, "tracking.match_iou_threshold must be between 0 and 1"
    if 'confirmation_hits' in tracking:
        hits = tracking['confirmation_hits']
        if not isinstance(hits, int) or hits <= 0:
            return False, "tracking.confirmation_hits must be a positive integer"
    for key in ('miss_tolerance', 'grace_period'):
        if key in tracking and (not isinstance(tracking[key], int) or tracking[key] < 0):
            return False, f"tracking.{key} must be a non-negative integer"
    if 'smoothing_alpha' in tracking:
        alpha = tracking['smoothing_alpha']
        if not isinstance(alpha, (int, float)) or not (0 < alpha <= 1):
            return False, "tracking.smoothing_alpha must be between 0 and 1"

    # Optional scheduler settings
    scheduler = config.get('scheduler') or {}
    max_age = scheduler.get('max_frame_age_s', 0.5)
    if max_age is not None and (not isinstance(max_age, (int, float)) or max_age <= 0):
        return False, "scheduler.max_frame_age_s must be a positive number or null"
    pool = scheduler.get('buffer_pool_size', 2)
    if not isinstance(pool, int) or pool < 1:
        return False, "scheduler.buffer_pool_size must be an integer >= 1"

    # Validate log settings
    if config['log_level'] not in VALID_LOG_LEVELS:
        return False, f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}"

    return True, None


def _parse_source(value: str):
    """Camera indices arrive as strings on the command line."""
    return int(value) if value.isdigit() else value


def apply_cli_overrides(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Apply --source/--model/--report/--log-level on top of the loaded config."""
    if args.source is not None:
        config.setdefault('source', {})['device_id'] = _parse_source(args.source)
    if args.model is not None:
        config.setdefault('model', {})['path'] = args.model
    if args.report is not None:
        config['report_dir'] = args.report
    if args.log_level is not None:
        config['log_level'] = args.log_level.upper()
    return config


def start_api_server(app, port: int) -> threading.Thread:
    def run_web_app():
        uvicorn.run(
            app,
            host="0.0.0.0",
            port=port,
            log_level="info",
        )

    web_thread = threading.Thread(target=run_web_app, name="api-server", daemon=True)
    web_thread.start()
    logging.info(f"API server started on port {port}")
    return web_thread


def main() -> int:
    """Main application function. Returns the process exit code."""
    parser = argparse.ArgumentParser(description='Pothole Monitor - frame inference pipeline')
    parser.add_argument('--config', type=str, default='config/config.yaml',
                        help='Path to configuration file')
    parser.add_argument('--source', type=str, default=None,
                        help='Camera index, RTSP URL or video file')
    parser.add_argument('--model', type=str, default=None,
                        help='Model artifact path')
    parser.add_argument('--report', type=str, default=None,
                        help='Directory for the session report')
    parser.add_argument('--serve', type=int, nargs='?', const=5000, default=None,
                        help='Serve the read-only API (default port 5000)')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Override log level')
    args = parser.parse_args()

    config = apply_cli_overrides(load_config(args.config), args)

    # Handle RTSP credentials if secrets_file is provided
    try:
        inject_rtsp_credentials(config.get("source") or {})
    except Exception as e:
        logging.error(f"Error loading source secrets: {e}")

    is_valid, error_msg = validate_config(config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        return 1

    setup_logging(config['log_path'], config['log_level'])
    cfg = Config.from_dict(config)
    source_name = sanitize_url(cfg.source.device_id)
    logging.info(f"Starting Pothole Monitor: source={source_name}, model={cfg.model.path}")

    scheduler = build_pipeline(cfg, source_id=source_name)
    aggregator = SessionAggregator(cfg.severity)
    scheduler.add_callback(aggregator)

    if args.serve is not None:
        start_api_server(create_app(scheduler, aggregator), args.serve)

    scheduler.start()
    try:
        ended = scheduler.wait()
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        ended = scheduler.stop()

    if cfg.report_dir:
        try:
            write_report(
                aggregator,
                cfg.report_dir,
                source_name=source_name,
                model_name=os.path.basename(cfg.model.path),
            )
        except OSError as e:
            logging.error(f"Failed to write report: {e}")

    summary = aggregator.summary()
    logging.info(
        f"Session finished: potholes={summary['unique_potholes']}, "
        f"frames={summary['frames_processed']}, rating={summary['severity_rating']:.1f}"
    )

    if ended is None or ended.is_error:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
