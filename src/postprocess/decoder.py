"""
Raw model output -> Detection decoding.

Supported layouts (boxes are centre-x, centre-y, width, height in
model-input pixels):
- yolov8: (1, 4 + nc, N), class scores already in [0, 1]. A transposed
  (1, N, 4 + nc) export is accepted too.
- yolov5: (1, N, 5 + nc), objectness * class score gives the confidence.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np

from inference.backend import ModelContract, RawOutput
from models.config import PostprocessConfig
from models.detection import BoundingBox, Detection
from models.errors import PostprocessDecodeError
from preprocess.letterbox import LetterboxMapping
from .nms import batched_nms

_SCORE_TOLERANCE = 1e-4


def _candidates_yolov8(pred: np.ndarray, num_classes: int) -> Tuple[np.ndarray, np.ndarray]:
    rows = 4 + num_classes
    if pred.shape[0] != rows:
        if pred.shape[1] == rows:
            pred = pred.T
        else:
            raise PostprocessDecodeError(
                f"yolov8 output shape {pred.shape} has no axis of size {rows} (4 + {num_classes} classes)"
            )
    # (4 + nc, N) -> (N, 4 + nc)
    pred = pred.T
    return pred[:, :4], pred[:, 4:]


def _candidates_yolov5(pred: np.ndarray, num_classes: int) -> Tuple[np.ndarray, np.ndarray]:
    cols = 5 + num_classes
    if pred.shape[1] != cols:
        raise PostprocessDecodeError(
            f"yolov5 output shape {pred.shape} does not have {cols} columns (5 + {num_classes} classes)"
        )
    return pred[:, :4], pred[:, 5:] * pred[:, 4:5]


def decode(
    raw_output: RawOutput,
    mapping: LetterboxMapping,
    confidence_threshold: float = 0.25,
    iou_threshold: float = 0.45,
    contract: Optional[ModelContract] = None,
    max_detections: Optional[int] = None,
) -> List[Detection]:
    """
    Decode one forward pass into frame-normalized detections.

    Steps: confidence filter, inverse letterbox + normalize + clamp, per-class
    greedy NMS. Output is ordered by descending confidence and is a pure
    function of its inputs.

    Raises:
        PostprocessDecodeError: Output is malformed for the declared layout.
    """
    contract = contract or ModelContract()
    if not raw_output.outputs:
        raise PostprocessDecodeError("RawOutput has no arrays")

    pred = np.asarray(raw_output.primary)
    if pred.ndim == 3:
        if pred.shape[0] != 1:
            raise PostprocessDecodeError(f"Expected batch size 1, got output shape {pred.shape}")
        pred = pred[0]
    if pred.ndim != 2:
        raise PostprocessDecodeError(f"Unexpected output rank {pred.ndim} (shape {pred.shape})")
    pred = pred.astype(np.float64, copy=False)

    if contract.output_layout == "yolov5":
        boxes_cxcywh, class_scores = _candidates_yolov5(pred, contract.num_classes)
    else:
        boxes_cxcywh, class_scores = _candidates_yolov8(pred, contract.num_classes)

    if class_scores.size == 0:
        return []

    class_ids = np.argmax(class_scores, axis=1)
    scores = class_scores[np.arange(len(class_ids)), class_ids]

    finite = np.isfinite(scores) & np.all(np.isfinite(boxes_cxcywh), axis=1)
    if np.any((scores[finite] < -_SCORE_TOLERANCE) | (scores[finite] > 1 + _SCORE_TOLERANCE)):
        raise PostprocessDecodeError("Class scores outside [0, 1]; output looks like raw logits")

    mask = finite & (scores >= confidence_threshold)
    if not np.any(mask):
        return []
    boxes_cxcywh = boxes_cxcywh[mask]
    scores = np.clip(scores[mask], 0.0, 1.0)
    class_ids = class_ids[mask]

    cx, cy, w, h = boxes_cxcywh.T
    model_xyxy = np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)
    norm_xyxy = np.clip(mapping.model_to_normalized(model_xyxy), 0.0, 1.0)

    area = (norm_xyxy[:, 2] - norm_xyxy[:, 0]) * (norm_xyxy[:, 3] - norm_xyxy[:, 1])
    valid = area > 0
    norm_xyxy, scores, class_ids = norm_xyxy[valid], scores[valid], class_ids[valid]

    keep = batched_nms(norm_xyxy, scores, class_ids, iou_threshold)
    if max_detections is not None:
        keep = keep[:max_detections]

    detections = []
    for idx in keep:
        x1, y1, x2, y2 = (float(v) for v in norm_xyxy[idx])
        class_id = int(class_ids[idx])
        detections.append(Detection(
            bbox=BoundingBox.from_xyxy(x1, y1, x2, y2),
            class_id=class_id,
            confidence=float(scores[idx]),
            source_frame_seq=raw_output.frame_seq,
            class_name=contract.label(class_id),
        ))
    return detections


class Postprocessor:
    """
    Decoder bound to a model contract and thresholds.

    Example:
        post = Postprocessor(contract, PostprocessConfig(confidence_threshold=0.4))
        detections = post.decode(raw_output, prepared.mapping)
    """

    def __init__(self, contract: ModelContract, cfg: Optional[PostprocessConfig] = None):
        self.contract = contract
        self.cfg = cfg or PostprocessConfig()

    def decode(self, raw_output: RawOutput, mapping: LetterboxMapping) -> List[Detection]:
        detections = decode(
            raw_output,
            mapping,
            confidence_threshold=self.cfg.confidence_threshold,
            iou_threshold=self.cfg.iou_threshold,
            contract=self.contract,
            max_detections=self.cfg.max_detections,
        )
        logging.debug(f"Frame {raw_output.frame_seq}: {len(detections)} detections")
        return detections
