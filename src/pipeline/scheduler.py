"""
Pipeline scheduler for the pothole monitor.

This module drives the per-frame chain on one worker thread:

    read -> stale check -> prepare -> infer -> decode -> track -> publish

Inference is usually slower than capture. Instead of queueing, the scheduler
drops any frame that is already older than ``max_frame_age_s`` when it is
picked up; together with the drop-oldest LiveFrameSource this keeps latency
and memory bounded.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from inference.engine import InferenceEngine, create_engine
from models.config import Config, SchedulerConfig
from models.errors import PipelineError, RECOVERABLE_ERRORS
from models.frame import Frame
from models.status import PipelineResult, PipelineStats, SessionEnded, SessionState
from observation import create_source_from_config
from observation.base import FrameSource
from postprocess.decoder import Postprocessor
from preprocess.buffer_pool import TensorPool
from preprocess.preprocessor import Preprocessor
from tracking.tracker import PotholeTracker
from .exchange import LatestResultCell

ResultCallback = Callable[[PipelineResult], None]
SessionCallback = Callable[[SessionEnded], None]


class PipelineScheduler:
    """
    Runs the frame inference pipeline for one session.

    Example:
        scheduler = PipelineScheduler(source, engine, preprocessor, postprocessor, tracker,
                                      SchedulerConfig(), model_path="models/pothole.torchscript")
        scheduler.start()
        ...
        result = scheduler.latest()
        ended = scheduler.stop()
    """

    def __init__(
        self,
        source: FrameSource,
        engine: InferenceEngine,
        preprocessor: Preprocessor,
        postprocessor: Postprocessor,
        tracker: PotholeTracker,
        config: Optional[SchedulerConfig] = None,
        model_path: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.source = source
        self.engine = engine
        self.preprocessor = preprocessor
        self.postprocessor = postprocessor
        self.tracker = tracker
        self.config = config or SchedulerConfig()
        self.model_path = model_path
        self._clock = clock

        self.stats = PipelineStats()
        self.cell: LatestResultCell[PipelineResult] = LatestResultCell()
        self._state = SessionState.IDLE
        self._stop_event = threading.Event()
        self._resume_event = threading.Event()
        self._resume_event.set()
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._ended: Optional[SessionEnded] = None
        self._callbacks: List[ResultCallback] = []
        self._session_callbacks: List[SessionCallback] = []
        self._released = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def ended(self) -> Optional[SessionEnded]:
        return self._ended

    @property
    def is_running(self) -> bool:
        return self._state in (SessionState.RUNNING, SessionState.PAUSED)

    def add_callback(self, callback: ResultCallback) -> None:
        """
        Add a callback to be called with each published PipelineResult.

        Callbacks run on the worker thread; a failing callback is logged and
        never ends the session.
        """
        self._callbacks.append(callback)

    def on_session_ended(self, callback: SessionCallback) -> None:
        """Register a callback for the terminal SessionEnded event."""
        self._session_callbacks.append(callback)

    def latest(self) -> Optional[PipelineResult]:
        """Most recent complete result, or None before the first frame."""
        return self.cell.get()

    def start(self) -> None:
        """Run the session on a background worker thread."""
        if self._thread is not None:
            raise RuntimeError("Scheduler already started")
        self._thread = threading.Thread(target=self.run, name="pipeline-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> Optional[SessionEnded]:
        """
        Request a stop and wait for the worker to finish its cleanup.

        Safe mid-frame: the in-flight frame is completed or abandoned, nothing
        from it is published, and engine and source are released once.
        """
        if self._state not in (SessionState.ENDED, SessionState.IDLE):
            self._state = SessionState.STOPPING
        self._stop_event.set()
        self._resume_event.set()

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(self.config.stop_timeout_s if timeout is None else timeout)
            if self._thread.is_alive():
                logging.warning("Pipeline worker did not stop within timeout")
        return self._ended

    def pause(self) -> None:
        """Block the worker between frames until resume()."""
        if self._state is SessionState.RUNNING:
            self._resume_event.clear()
            self._state = SessionState.PAUSED
            logging.info("Pipeline paused")

    def resume(self) -> None:
        if self._state is SessionState.PAUSED:
            self._state = SessionState.RUNNING
            self._resume_event.set()
            logging.info("Pipeline resumed")

    def wait(self, timeout: Optional[float] = None) -> Optional[SessionEnded]:
        """Wait for the session to end; returns the SessionEnded event (None on timeout)."""
        self._done.wait(timeout)
        return self._ended

    def run(self) -> SessionEnded:
        """
        Run the processing loop until end of stream, stop() or a fatal error.

        Opens the model and source, processes frames, then releases both.
        Never raises for pipeline errors; the outcome is the returned
        SessionEnded (also delivered to on_session_ended callbacks).
        """
        if self._state is SessionState.ENDED:
            raise RuntimeError("Session already ended; build a new scheduler")
        if self._stop_event.is_set():
            ended = SessionEnded(reason="stopped")
            self._cleanup()
            self._finish(ended)
            return ended

        self._state = SessionState.RUNNING
        self.stats = PipelineStats()
        ended = None

        try:
            if self.model_path is not None:
                self.engine.load_model(self.model_path)
            self.source.open()
            logging.info(
                f"Pipeline started: source={self.source.source_id}, "
                f"accelerated={self.engine.supports_accelerated()}"
            )

            while True:
                if not self._wait_if_paused():
                    ended = SessionEnded(reason="stopped")
                    break

                frame = self.source.read()
                if frame is None:
                    logging.info("End of stream reached")
                    ended = SessionEnded(reason="completed")
                    break
                self.stats.frames_read += 1

                if self._stop_event.is_set():
                    ended = SessionEnded(reason="stopped")
                    break

                if self._is_stale(frame):
                    self.stats.frames_dropped_stale += 1
                    continue

                try:
                    result = self._process_frame(frame)
                except RECOVERABLE_ERRORS as e:
                    self.stats.frames_skipped += 1
                    self.stats.record_error(e.kind)
                    logging.warning(f"Skipping frame {frame.seq}: {e.kind}: {e}")
                    continue

                if self._stop_event.is_set():
                    ended = SessionEnded(reason="stopped")
                    break
                self._publish(result)
                self._handle_periodic_tasks()

        except KeyboardInterrupt:
            logging.info("Pipeline interrupted by user")
            ended = SessionEnded(reason="stopped")
        except PipelineError as e:
            self.stats.record_error(e.kind)
            logging.error(f"Pipeline error ({e.kind}): {e}")
            ended = SessionEnded(reason="error", error_kind=e.kind, error=e)
        except Exception as e:
            self.stats.record_error("unexpected")
            logging.exception(f"Unexpected pipeline error: {e}")
            ended = SessionEnded(reason="error", error_kind="unexpected", error=e)
        finally:
            self._cleanup()

        ended = SessionEnded(
            reason=ended.reason,
            error_kind=ended.error_kind,
            error=ended.error,
            frames_processed=self.stats.frames_processed,
        )
        self._finish(ended)
        return ended

    def _wait_if_paused(self) -> bool:
        """Block while paused. Returns False once a stop was requested."""
        while not self._resume_event.is_set():
            if self._stop_event.is_set():
                return False
            self._resume_event.wait(0.1)
        return not self._stop_event.is_set()

    def _is_stale(self, frame: Frame) -> bool:
        max_age = self.config.max_frame_age_s
        if max_age is None:
            return False
        age = self._clock() - frame.timestamp
        if age > max_age:
            logging.debug(f"Dropping stale frame {frame.seq} (age {age * 1000:.0f}ms)")
            return True
        return False

    def _process_frame(self, frame: Frame) -> PipelineResult:
        """Run one frame through prepare, infer, decode and track."""
        start = time.perf_counter()

        prepared = self.preprocessor.prepare(frame)
        try:
            raw = self.engine.infer(prepared)
            detections = self.postprocessor.decode(raw, prepared.mapping)
        finally:
            prepared.release()

        tracks = self.tracker.update(detections, frame.seq)
        latency_ms = (time.perf_counter() - start) * 1000.0

        self.stats.frames_processed += 1
        self.stats.detections_total += len(detections)
        self.stats.last_frame_ts = frame.timestamp
        self.stats.record_latency(latency_ms)

        return PipelineResult(
            frame_seq=frame.seq,
            timestamp=frame.timestamp,
            frame_size=frame.size,
            tracks=tuple(tracks),
            detection_count=len(detections),
            latency_ms=latency_ms,
        )

    def _publish(self, result: PipelineResult) -> None:
        self.cell.set(result)
        for callback in self._callbacks:
            try:
                callback(result)
            except Exception as e:
                logging.warning(f"Callback error: {e}")

    def _handle_periodic_tasks(self) -> None:
        now = time.time()
        if now - self.stats.last_stats_log_time >= self.config.stats_log_interval:
            logging.info(
                f"Pipeline stats: frames={self.stats.frames_processed}, "
                f"stale={self.stats.frames_dropped_stale}, skipped={self.stats.frames_skipped}, "
                f"fps={self.stats.fps:.1f}, latency={self.stats.avg_latency_ms:.0f}ms, "
                f"potholes={self.tracker.unique_confirmed}, errors={self.stats.errors_by_kind}"
            )
            self.stats.last_stats_log_time = now

    def _cleanup(self) -> None:
        """Release source and engine exactly once."""
        if self._released:
            return
        self._released = True

        try:
            self.source.close()
        except Exception as e:
            logging.warning(f"Error closing source: {e}")

        try:
            self.engine.close()
        except Exception as e:
            logging.warning(f"Error releasing model: {e}")

    def _finish(self, ended: SessionEnded) -> None:
        self._ended = ended
        self._state = SessionState.ENDED
        logging.info(
            f"Pipeline stopped: reason={ended.reason}"
            + (f", error={ended.error_kind}" if ended.error_kind else "")
            + f", frames={ended.frames_processed}"
        )
        for callback in self._session_callbacks:
            try:
                callback(ended)
            except Exception as e:
                logging.warning(f"Session callback error: {e}")
        self._done.set()

    def status(self) -> Dict[str, Any]:
        """Diagnostics snapshot for the status API."""
        dropped_live = getattr(self.source, "dropped", 0)
        return {
            "state": self._state.value,
            "source_id": self.source.source_id,
            "accelerated": self.engine.supports_accelerated(),
            "unique_potholes": self.tracker.unique_confirmed,
            "frames_dropped_live": dropped_live,
            "ended_reason": self._ended.reason if self._ended else None,
            "error_kind": self._ended.error_kind if self._ended else None,
            "stats": self.stats.to_dict(),
        }


def build_pipeline(config: Config, source_id: str = "camera") -> PipelineScheduler:
    """
    Factory function to create a PipelineScheduler from the application Config.

    The model is not loaded here; the scheduler loads it when the session
    starts so that a ModelLoadError surfaces as a SessionEnded event.
    """
    source = create_source_from_config(config.source, source_id=source_id)
    engine = create_engine(config.model)

    input_w, input_h = config.model.input_size
    pool = TensorPool((3, input_h, input_w), size=config.scheduler.buffer_pool_size)
    preprocessor = Preprocessor(
        input_size=config.model.input_size,
        pool=pool,
        mean=config.model.mean,
        std=config.model.std,
    )
    postprocessor = Postprocessor(engine.contract, config.postprocess)
    tracker = PotholeTracker(config.tracking)

    return PipelineScheduler(
        source,
        engine,
        preprocessor,
        postprocessor,
        tracker,
        config.scheduler,
        model_path=config.model.path,
    )
