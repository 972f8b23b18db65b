"""
Tests for the pipeline scheduler.

Uses a scripted frame source and a fake inference backend so the full
prepare -> infer -> decode -> track chain runs without a camera or model.
"""

import threading
import time
from typing import Optional

import numpy as np
import pytest

from inference.backend import ModelContract
from inference.engine import InferenceEngine
from models.config import Config, ModelConfig, PostprocessConfig, SchedulerConfig, SourceConfig, TrackingConfig
from models.errors import InvalidFrame, SourceUnavailable
from models.frame import Frame
from models.status import SessionState
from observation.base import FrameSource, FrameSourceConfig
from pipeline.exchange import LatestResultCell
from pipeline.scheduler import PipelineScheduler, build_pipeline
from postprocess.decoder import Postprocessor
from preprocess.preprocessor import Preprocessor
from tracking.tracker import PotholeTracker

INPUT = (64, 64)
# One pothole in the middle of a 64x64 model input
POTHOLE_OUTPUT = np.array([[[32.0], [32.0], [16.0], [16.0], [0.9]]], dtype=np.float32)
EMPTY_OUTPUT = np.zeros((1, 5, 1), dtype=np.float32)


class ScriptedSource(FrameSource):
    """
    Frame source driven by a script.

    Each item is an image (delivered as a frame), a (image, timestamp) pair,
    or an exception instance (raised from read()). ``endless`` keeps
    producing black frames after the script.
    """

    def __init__(self, script=None, endless=False, delay=0.0):
        super().__init__(FrameSourceConfig(source_id="scripted"))
        self.script = list(script or [])
        self.endless = endless
        self.delay = delay
        self.open_calls = 0
        self.close_calls = 0

    def open(self) -> None:
        self.open_calls += 1
        self._is_open = True

    def read(self) -> Optional[Frame]:
        if self.delay:
            time.sleep(self.delay)
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, tuple):
                image, ts = item
                return self._make_frame(image, timestamp=ts)
            return self._make_frame(item)
        if self.endless:
            return self._make_frame(_image())
        return None

    def close(self) -> None:
        self.close_calls += 1
        self._is_open = False


class ScriptedBackend:
    """Backend returning POTHOLE_OUTPUT unless told otherwise for a given call."""

    name = "scripted"

    def __init__(self, failures=(), empty=(), fail_load=None):
        self.failures = set(failures)
        self.empty = set(empty)
        self.fail_load = fail_load
        self.calls = 0
        self.close_calls = 0

    def load(self, path):
        if self.fail_load is not None:
            raise self.fail_load

    def forward(self, batch):
        self.calls += 1
        if self.calls in self.failures:
            raise RuntimeError("delegate crashed")
        if self.calls in self.empty:
            return [EMPTY_OUTPUT]
        return [POTHOLE_OUTPUT]

    def supports_accelerated(self):
        return False

    def close(self):
        self.close_calls += 1


def _image(value=0):
    return np.full((INPUT[1], INPUT[0], 3), value, dtype=np.uint8)


def _scheduler(source, backend=None, tracking=None, scheduler_cfg=None, model_path="model.torchscript",
               clock=time.time):
    backend = backend or ScriptedBackend()
    contract = ModelContract(input_size=INPUT, output_layout="yolov8", labels=("pothole",))
    engine = InferenceEngine(backend, contract, timeout_s=None)
    return PipelineScheduler(
        source,
        engine,
        Preprocessor(input_size=INPUT),
        Postprocessor(contract, PostprocessConfig()),
        PotholeTracker(tracking or TrackingConfig(confirmation_hits=2)),
        scheduler_cfg or SchedulerConfig(max_frame_age_s=None),
        model_path=model_path,
        clock=clock,
    )


class TestLatestResultCell:
    def test_empty(self):
        cell = LatestResultCell()
        assert cell.get() is None
        assert cell.version == 0

    def test_replace(self):
        cell = LatestResultCell()
        assert cell.set("a") == 1
        assert cell.set("b") == 2
        assert cell.get_versioned() == (2, "b")

    def test_clear_keeps_version(self):
        cell = LatestResultCell()
        cell.set("a")
        cell.clear()
        assert cell.get() is None
        assert cell.version == 1


class TestRunToCompletion:
    def test_completed_session(self):
        source = ScriptedSource([_image() for _ in range(5)])
        scheduler = _scheduler(source)

        ended = scheduler.run()

        assert ended.reason == "completed"
        assert ended.error_kind is None
        assert ended.frames_processed == 5
        assert scheduler.state is SessionState.ENDED
        assert scheduler.stats.frames_read == 5
        assert scheduler.stats.detections_total == 5
        assert source.close_calls == 1
        assert scheduler.engine.release_count == 1

    def test_latest_result_has_confirmed_pothole(self):
        scheduler = _scheduler(ScriptedSource([_image() for _ in range(3)]))
        scheduler.run()

        result = scheduler.latest()
        assert result.frame_seq == 3
        assert result.frame_size == INPUT
        assert result.detection_count == 1
        assert [t.track_id for t in result.tracks] == [1]
        assert result.tracks[0].bbox.as_tuple() == pytest.approx((0.375, 0.375, 0.25, 0.25))

    def test_tentative_not_published(self):
        scheduler = _scheduler(ScriptedSource([_image()]))
        scheduler.run()
        assert scheduler.latest().tracks == ()

    def test_every_processed_frame_published_in_order(self):
        seen = []
        scheduler = _scheduler(ScriptedSource([_image() for _ in range(4)]))
        scheduler.add_callback(lambda r: seen.append(r.frame_seq))

        scheduler.run()

        assert seen == [1, 2, 3, 4]
        assert scheduler.cell.version == 4

    def test_session_ended_callback(self):
        events = []
        scheduler = _scheduler(ScriptedSource([_image()]))
        scheduler.on_session_ended(events.append)

        ended = scheduler.run()

        assert events == [ended]

    def test_callback_failure_does_not_end_session(self):
        def broken(result):
            raise ValueError("consumer bug")

        scheduler = _scheduler(ScriptedSource([_image() for _ in range(3)]))
        scheduler.add_callback(broken)

        assert scheduler.run().reason == "completed"
        assert scheduler.stats.frames_processed == 3

    def test_run_twice_rejected(self):
        scheduler = _scheduler(ScriptedSource([]))
        scheduler.run()
        with pytest.raises(RuntimeError):
            scheduler.run()


class TestErrorHandling:
    def test_source_lost_mid_session(self):
        source = ScriptedSource([_image(), _image(), SourceUnavailable("camera unplugged")])
        scheduler = _scheduler(source)

        ended = scheduler.run()

        assert ended.reason == "error"
        assert ended.error_kind == "source_unavailable"
        assert isinstance(ended.error, SourceUnavailable)
        assert ended.frames_processed == 2
        assert scheduler.engine.release_count == 1
        assert source.close_calls == 1

    def test_model_load_error(self):
        source = ScriptedSource([_image()])
        scheduler = _scheduler(source, backend=ScriptedBackend(fail_load=OSError("no such file")))

        ended = scheduler.run()

        assert ended.error_kind == "model_load_error"
        assert source.open_calls == 0
        assert source.close_calls == 1
        assert scheduler.stats.frames_processed == 0

    def test_failed_inference_skips_frame(self):
        backend = ScriptedBackend(failures={2})
        scheduler = _scheduler(ScriptedSource([_image() for _ in range(4)]), backend=backend)

        ended = scheduler.run()

        assert ended.reason == "completed"
        assert scheduler.stats.frames_skipped == 1
        assert scheduler.stats.errors_by_kind == {"inference_timeout": 1}
        assert scheduler.stats.frames_processed == 3
        # Skipped frame never reached the tracker
        assert scheduler.tracker.tracks[1].hit_count == 3
        assert scheduler.latest().frame_seq == 4

    def test_invalid_frame_skipped(self):
        bad = np.zeros((INPUT[1], INPUT[0], 4), dtype=np.uint8)
        scheduler = _scheduler(ScriptedSource([_image(), bad, _image()]))

        scheduler.run()

        assert scheduler.stats.errors_by_kind == {InvalidFrame.kind: 1}
        assert scheduler.stats.frames_processed == 2

    def test_skipped_frames_keep_buffer_pool_balanced(self):
        backend = ScriptedBackend(failures={1, 2, 3, 4})
        scheduler = _scheduler(ScriptedSource([_image() for _ in range(6)]), backend=backend)

        assert scheduler.run().reason == "completed"
        assert scheduler.preprocessor.pool.in_use == 0

    def test_unexpected_exception(self):
        scheduler = _scheduler(ScriptedSource([_image(), ZeroDivisionError("bug")]))

        ended = scheduler.run()

        assert ended.reason == "error"
        assert ended.error_kind == "unexpected"
        assert scheduler.engine.release_count == 1

    def test_keyboard_interrupt_stops(self):
        scheduler = _scheduler(ScriptedSource([_image(), KeyboardInterrupt()]))
        ended = scheduler.run()
        assert ended.reason == "stopped"
        assert scheduler.engine.release_count == 1


class TestStaleFrames:
    def test_stale_frames_dropped(self):
        now = 1000.0
        source = ScriptedSource([
            (_image(), now - 0.1),
            (_image(), now - 5.0),
            (_image(), now - 0.2),
        ])
        scheduler = _scheduler(
            source,
            scheduler_cfg=SchedulerConfig(max_frame_age_s=0.5),
            clock=lambda: now,
        )

        scheduler.run()

        assert scheduler.stats.frames_dropped_stale == 1
        assert scheduler.stats.frames_processed == 2
        assert scheduler.latest().frame_seq == 3

    def test_age_check_disabled(self):
        source = ScriptedSource([(_image(), 0.0)])
        scheduler = _scheduler(source, scheduler_cfg=SchedulerConfig(max_frame_age_s=None))
        scheduler.run()
        assert scheduler.stats.frames_processed == 1


class TestThreadedLifecycle:
    def _wait_for(self, predicate, timeout=5.0):
        deadline = time.time() + timeout
        while time.time() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return False

    def test_stop_mid_stream(self):
        source = ScriptedSource(endless=True, delay=0.005)
        scheduler = _scheduler(source)
        scheduler.start()
        assert self._wait_for(lambda: scheduler.cell.version >= 3)

        ended = scheduler.stop()
        version_at_stop = scheduler.cell.version
        time.sleep(0.05)

        assert ended.reason == "stopped"
        assert scheduler.state is SessionState.ENDED
        assert scheduler.cell.version == version_at_stop
        assert scheduler.engine.release_count == 1
        assert source.close_calls == 1

    def test_stop_twice_is_safe(self):
        scheduler = _scheduler(ScriptedSource(endless=True, delay=0.005))
        scheduler.start()
        first = scheduler.stop()
        second = scheduler.stop()
        assert first is second
        assert scheduler.engine.release_count <= 1

    def test_start_twice_rejected(self):
        scheduler = _scheduler(ScriptedSource(endless=True, delay=0.005))
        scheduler.start()
        try:
            with pytest.raises(RuntimeError):
                scheduler.start()
        finally:
            scheduler.stop()

    def test_wait_returns_completion(self):
        scheduler = _scheduler(ScriptedSource([_image() for _ in range(3)]))
        scheduler.start()
        ended = scheduler.wait(5.0)
        assert ended.reason == "completed"

    def test_stop_before_start(self):
        source = ScriptedSource([_image()])
        scheduler = _scheduler(source)

        assert scheduler.stop() is None
        ended = scheduler.run()

        assert ended.reason == "stopped"
        assert source.open_calls == 0
        assert scheduler.cell.version == 0

    def test_pause_and_resume(self):
        scheduler = _scheduler(ScriptedSource(endless=True, delay=0.005))
        scheduler.start()
        try:
            assert self._wait_for(lambda: scheduler.cell.version >= 1)
            scheduler.pause()
            assert scheduler.state is SessionState.PAUSED
            time.sleep(0.1)
            paused_version = scheduler.cell.version
            time.sleep(0.1)
            assert scheduler.cell.version == paused_version

            scheduler.resume()
            assert self._wait_for(lambda: scheduler.cell.version > paused_version)
        finally:
            scheduler.stop()

    def test_stop_while_paused(self):
        scheduler = _scheduler(ScriptedSource(endless=True, delay=0.005))
        scheduler.start()
        assert self._wait_for(lambda: scheduler.cell.version >= 1)
        scheduler.pause()

        ended = scheduler.stop()

        assert ended.reason == "stopped"
        assert scheduler.engine.release_count == 1


class TestStatus:
    def test_status_snapshot(self):
        scheduler = _scheduler(ScriptedSource([_image() for _ in range(3)]))
        scheduler.run()

        status = scheduler.status()

        assert status["state"] == "ended"
        assert status["source_id"] == "scripted"
        assert status["accelerated"] is False
        assert status["unique_potholes"] == 1
        assert status["frames_dropped_live"] == 0
        assert status["ended_reason"] == "completed"
        assert status["stats"]["frames_processed"] == 3


class TestBuildPipeline:
    def test_missing_model_ends_session(self, tmp_path):
        pytest.importorskip("torch")
        config = Config(
            source=SourceConfig(device_id=str(tmp_path / "road.mp4"), live=False),
            model=ModelConfig(path=str(tmp_path / "missing.torchscript"), input_size=(64, 64)),
            scheduler=SchedulerConfig(buffer_pool_size=1),
        )
        scheduler = build_pipeline(config, source_id="road.mp4")

        assert scheduler.preprocessor.pool.shape == (3, 64, 64)
        ended = scheduler.run()
        assert ended.error_kind == "model_load_error"
