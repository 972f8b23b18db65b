"""
Error taxonomy for the frame inference pipeline.

Every error carries a stable ``kind`` string (used in diagnostics counters and
in the terminal SessionEnded event) and a ``fatal`` flag:

- fatal errors end the session (source lost, model missing, logic errors)
- recoverable errors skip the offending frame and the session continues
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    kind: str = "pipeline_error"
    fatal: bool = True


class SourceUnavailable(PipelineError):
    """The capture device or video file became inaccessible."""

    kind = "source_unavailable"
    fatal = True


class ModelLoadError(PipelineError):
    """The model artifact is missing, corrupt or incompatible."""

    kind = "model_load_error"
    fatal = True


class InvalidFrame(PipelineError):
    """Frame has an unsupported format or zero-area dimensions."""

    kind = "invalid_frame"
    fatal = False


class InferenceTimeout(PipelineError):
    """A single forward pass failed or exceeded its time budget."""

    kind = "inference_timeout"
    fatal = False


class PostprocessDecodeError(PipelineError):
    """Raw model output could not be decoded into detections."""

    kind = "postprocess_decode_error"
    fatal = False


class EngineBusy(PipelineError):
    """A second infer() overlapped an in-flight one on the same model handle."""

    kind = "engine_busy"
    fatal = True


class BufferPoolExhausted(PipelineError):
    """All pooled tensor buffers are leased out."""

    kind = "buffer_pool_exhausted"
    fatal = True


RECOVERABLE_ERRORS = (InvalidFrame, InferenceTimeout, PostprocessDecodeError)
