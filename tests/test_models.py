"""
Smoke tests for typed models.
"""

import numpy as np
import pytest

from models.detection import BoundingBox, Detection, box_iou, detections_to_numpy
from models.errors import (
    RECOVERABLE_ERRORS,
    BufferPoolExhausted,
    EngineBusy,
    InferenceTimeout,
    InvalidFrame,
    ModelLoadError,
    PostprocessDecodeError,
    SourceUnavailable,
)
from models.frame import Frame, PixelFormat
from models.status import PipelineResult, PipelineStats, SessionEnded
from models.track import TrackedObject, TrackSnapshot, TrackState


class TestFrame:
    def test_from_numpy(self):
        image = np.zeros((480, 640, 3), dtype=np.uint8)
        frame = Frame.from_numpy(image, timestamp=12.5, seq=7, source="cam")
        assert frame.width == 640
        assert frame.height == 480
        assert frame.size == (640, 480)
        assert frame.area == 640 * 480
        assert frame.pixel_format is PixelFormat.BGR
        assert frame.image is image

    def test_pixel_format_channels(self):
        assert PixelFormat.GRAY.channels == 1
        assert PixelFormat.RGB.channels == 3
        assert PixelFormat.RGBA.channels == 4


class TestBoundingBox:
    def test_properties(self):
        bbox = BoundingBox(x=0.1, y=0.2, w=0.4, h=0.2)
        assert bbox.x2 == pytest.approx(0.5)
        assert bbox.y2 == pytest.approx(0.4)
        assert bbox.center == pytest.approx((0.3, 0.3))
        assert bbox.area == pytest.approx(0.08)

    def test_from_xyxy(self):
        bbox = BoundingBox.from_xyxy(0.1, 0.1, 0.3, 0.5)
        assert bbox.as_tuple() == pytest.approx((0.1, 0.1, 0.2, 0.4))

    def test_to_pixels(self):
        bbox = BoundingBox(x=0.25, y=0.5, w=0.5, h=0.25)
        assert bbox.to_pixels(640, 480) == (160, 240, 480, 360)

    def test_clamped(self):
        bbox = BoundingBox(x=-0.1, y=0.9, w=0.3, h=0.3).clamped()
        assert bbox.x == 0.0
        assert bbox.x2 == pytest.approx(0.2)
        assert bbox.y2 == pytest.approx(1.0)

    def test_iou(self):
        a = BoundingBox(x=0.0, y=0.0, w=0.2, h=0.2)
        b = BoundingBox(x=0.1, y=0.0, w=0.2, h=0.2)
        assert a.iou(a) == pytest.approx(1.0)
        assert a.iou(b) == pytest.approx(0.02 / 0.06)
        assert a.iou(BoundingBox(x=0.5, y=0.5, w=0.1, h=0.1)) == 0.0

    def test_box_iou_degenerate(self):
        assert box_iou((0, 0, 0, 0), (0, 0, 0, 0)) == 0.0


class TestDetection:
    def test_from_xywh(self):
        det = Detection.from_xywh(0.4, 0.4, 0.1, 0.1, class_id=0, confidence=0.9, source_frame_seq=3)
        assert det.bbox == BoundingBox(0.4, 0.4, 0.1, 0.1)
        assert det.source_frame_seq == 3

    def test_confidence_out_of_range(self):
        with pytest.raises(ValueError):
            Detection.from_xywh(0.1, 0.1, 0.1, 0.1, confidence=1.2)

    def test_to_numpy(self):
        det = Detection.from_xywh(0.1, 0.2, 0.3, 0.4, class_id=1, confidence=0.5)
        np.testing.assert_allclose(det.to_numpy(), [0.1, 0.2, 0.3, 0.4, 0.5, 1])

    def test_detections_to_numpy_empty(self):
        assert detections_to_numpy([]).shape == (0, 6)


class TestTrackModels:
    def test_snapshot_is_immutable_copy(self):
        track = TrackedObject(
            track_id=4,
            smoothed_box=BoundingBox(0.1, 0.1, 0.2, 0.2),
            confidence=0.8,
            class_id=0,
            first_seen_seq=10,
            last_seen_seq=12,
            hit_count=3,
            state=TrackState.CONFIRMED,
        )
        snap = track.snapshot()
        track.hit_count = 99

        assert isinstance(snap, TrackSnapshot)
        assert snap.hit_count == 3
        assert track.age == 3
        with pytest.raises(Exception):
            snap.hit_count = 5

    def test_snapshot_to_dict(self):
        snap = TrackSnapshot(
            track_id=1, bbox=BoundingBox(0.1, 0.2, 0.3, 0.4), confidence=0.9, class_id=0,
            state=TrackState.LOST, first_seen_seq=1, last_seen_seq=5, hit_count=4,
        )
        d = snap.to_dict()
        assert d["state"] == "lost"
        assert d["bbox"] == pytest.approx([0.1, 0.2, 0.3, 0.4])

    def test_removed_is_terminal(self):
        assert TrackState.REMOVED.is_terminal
        assert not TrackState.LOST.is_terminal


class TestStatusModels:
    def test_pipeline_result_to_dict(self):
        result = PipelineResult(frame_seq=3, timestamp=1.0, frame_size=(640, 480), detection_count=2)
        d = result.to_dict()
        assert d["frame_seq"] == 3
        assert d["frame_size"] == [640, 480]
        assert d["tracks"] == []

    def test_session_ended(self):
        assert SessionEnded(reason="error", error_kind="source_unavailable").is_error
        assert not SessionEnded(reason="completed").is_error

    def test_stats_counters(self):
        stats = PipelineStats()
        stats.record_error("invalid_frame")
        stats.record_error("invalid_frame")
        stats.frames_processed = 1
        stats.record_latency(20.0)
        stats.frames_processed = 2
        stats.record_latency(30.0)

        assert stats.errors_by_kind == {"invalid_frame": 2}
        assert stats.last_latency_ms == 30.0
        assert stats.avg_latency_ms == pytest.approx(21.0)
        assert stats.to_dict()["errors_by_kind"] == {"invalid_frame": 2}


class TestErrors:
    @pytest.mark.parametrize("error_cls,kind,fatal", [
        (SourceUnavailable, "source_unavailable", True),
        (ModelLoadError, "model_load_error", True),
        (InvalidFrame, "invalid_frame", False),
        (InferenceTimeout, "inference_timeout", False),
        (PostprocessDecodeError, "postprocess_decode_error", False),
        (EngineBusy, "engine_busy", True),
        (BufferPoolExhausted, "buffer_pool_exhausted", True),
    ])
    def test_kind_and_fatal(self, error_cls, kind, fatal):
        err = error_cls("boom")
        assert err.kind == kind
        assert err.fatal is fatal
        assert (error_cls in RECOVERABLE_ERRORS) is (not fatal)
