"""
Postprocessing: raw model output -> thresholded, NMS-filtered detections.
"""

from .decoder import Postprocessor, decode
from .nms import batched_nms, nms

__all__ = ["Postprocessor", "decode", "nms", "batched_nms"]
