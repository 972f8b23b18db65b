"""
InferenceEngine: owns the loaded model and runs single-flight forward passes.

The handle is a scoped resource: loaded once at pipeline start, held for the
pipeline's lifetime and released exactly once on shutdown. Mobile/edge
runtimes are not proven safe for concurrent invocation, so at most one
infer() runs per handle; an overlapping call is rejected with EngineBusy.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import List, Optional, Tuple

import numpy as np

from models.config import ModelConfig
from models.errors import EngineBusy, InferenceTimeout, ModelLoadError, PostprocessDecodeError
from preprocess.preprocessor import PreparedTensor
from .backend import InferenceBackend, ModelContract, RawOutput, describe_backend
from .onnx_backend import OnnxConfig, OnnxRuntimeBackend
from .torchscript_backend import TorchScriptBackend, TorchScriptConfig


class ModelHandle:
    """A loaded model: backend + contract + artifact path."""

    def __init__(self, backend: InferenceBackend, contract: ModelContract, path: str):
        self.backend = backend
        self.contract = contract
        self.path = path
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Close the backend. Returns True only on the call that actually released it."""
        if self._released:
            return False
        self._released = True
        self.backend.close()
        return True


class InferenceEngine:
    """
    Single-flight wrapper around an InferenceBackend.

    Example:
        engine = InferenceEngine(TorchScriptBackend(TorchScriptConfig()), contract)
        engine.load_model("models/pothole.torchscript")
        raw = engine.infer(prepared)
        engine.close()
    """

    def __init__(
        self,
        backend: InferenceBackend,
        contract: ModelContract,
        timeout_s: Optional[float] = 1.0,
    ):
        self.backend = backend
        self.contract = contract
        self.timeout_s = timeout_s
        self._handle: Optional[ModelHandle] = None
        self._flight = threading.Lock()
        self._output_shapes: Optional[List[Tuple[int, ...]]] = None
        self.release_count = 0
        self.infer_count = 0

    @property
    def handle(self) -> Optional[ModelHandle]:
        return self._handle

    @property
    def is_loaded(self) -> bool:
        return self._handle is not None and not self._handle.released

    def supports_accelerated(self) -> bool:
        return self.backend.supports_accelerated()

    def load_model(self, path: str) -> ModelHandle:
        """
        Load the model artifact once.

        Raises:
            ModelLoadError: artifact missing/corrupt or runtime unavailable (fatal).
        """
        if self.is_loaded:
            return self._handle
        try:
            self.backend.load(path)
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to load model {path}: {e}") from e

        self._handle = ModelHandle(self.backend, self.contract, path)
        self._output_shapes = None
        logging.info(f"Inference engine ready: {describe_backend(self.backend)}")
        return self._handle

    def infer(self, prepared: PreparedTensor) -> RawOutput:
        """
        Run one forward pass.

        Raises:
            EngineBusy: another infer() is in flight on this handle.
            InferenceTimeout: the pass failed or exceeded timeout_s (skip the frame).
            PostprocessDecodeError: output shapes drifted from the first pass.
        """
        if not self._flight.acquire(blocking=False):
            raise EngineBusy("infer() called while another inference is in flight")
        try:
            if not self.is_loaded:
                raise ModelLoadError("infer() called without a loaded model")

            expected = self.contract.input_shape[1:]
            if tuple(prepared.tensor.shape) != expected:
                raise PostprocessDecodeError(
                    f"Input tensor shape {prepared.tensor.shape} does not match model contract {expected}"
                )

            batch = prepared.tensor[np.newaxis, ...]
            start = time.perf_counter()
            try:
                outputs = self.backend.forward(batch)
            except Exception as e:
                raise InferenceTimeout(f"Forward pass failed for frame {prepared.frame_seq}: {e}") from e
            latency_ms = (time.perf_counter() - start) * 1000.0
            self.infer_count += 1

            if self.timeout_s is not None and latency_ms > self.timeout_s * 1000.0:
                raise InferenceTimeout(
                    f"Inference for frame {prepared.frame_seq} took {latency_ms:.0f}ms "
                    f"(budget {self.timeout_s * 1000.0:.0f}ms)"
                )

            if not outputs:
                raise PostprocessDecodeError("Model returned no outputs")
            self._check_output_shapes(outputs)

            return RawOutput(
                outputs=tuple(np.asarray(o) for o in outputs),
                frame_seq=prepared.frame_seq,
                latency_ms=latency_ms,
            )
        finally:
            self._flight.release()

    def _check_output_shapes(self, outputs: List[np.ndarray]) -> None:
        shapes = [tuple(np.shape(o)) for o in outputs]
        if self._output_shapes is None:
            self._output_shapes = shapes
            logging.debug(f"Model output shapes: {shapes}")
            return
        if shapes != self._output_shapes:
            raise PostprocessDecodeError(
                f"Model output shapes changed from {self._output_shapes} to {shapes}"
            )

    def close(self) -> None:
        """Release the model handle. Idempotent; the handle is released exactly once."""
        if self._handle is None:
            return
        with self._flight:
            if self._handle.release():
                self.release_count += 1
                logging.info(f"Model handle released: {self._handle.path}")


def create_backend(cfg: ModelConfig) -> InferenceBackend:
    """Select the concrete backend for model.runtime."""
    try:
        if cfg.runtime == "torchscript":
            return TorchScriptBackend(TorchScriptConfig(device=cfg.device))
        if cfg.runtime == "onnx":
            return OnnxRuntimeBackend(OnnxConfig(device=cfg.device))
    except ImportError as e:
        raise ModelLoadError(str(e)) from e
    raise ModelLoadError(f"Unsupported model runtime: {cfg.runtime}")


def create_engine(cfg: ModelConfig) -> InferenceEngine:
    """Build an unloaded InferenceEngine from the model config."""
    return InferenceEngine(
        create_backend(cfg),
        ModelContract.from_model_config(cfg),
        timeout_s=cfg.inference_timeout_s,
    )
