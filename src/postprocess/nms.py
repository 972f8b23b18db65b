"""
Greedy non-maximum suppression.
"""

from __future__ import annotations

from typing import List

import numpy as np


def _iou_one_to_many(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    """IoU of one x1,y1,x2,y2 box against an (M, 4) array."""
    xx1 = np.maximum(box[0], others[:, 0])
    yy1 = np.maximum(box[1], others[:, 1])
    xx2 = np.minimum(box[2], others[:, 2])
    yy2 = np.minimum(box[3], others[:, 3])
    inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
    area = (box[2] - box[0]) * (box[3] - box[1])
    areas = (others[:, 2] - others[:, 0]) * (others[:, 3] - others[:, 1])
    union = area + areas - inter
    return np.where(union > 0, inter / np.maximum(union, 1e-12), 0.0)


def nms(boxes: np.ndarray, scores: np.ndarray, iou_threshold: float) -> List[int]:
    """
    Single-class greedy NMS.

    Candidates are visited by descending score (stable: equal scores keep
    their original order). A candidate is kept only if its IoU with every
    already kept box is strictly below ``iou_threshold``.

    Returns:
        Indices into ``boxes`` of the kept candidates, in descending score order.
    """
    if len(boxes) == 0:
        return []
    boxes = np.asarray(boxes, dtype=np.float64)
    scores = np.asarray(scores, dtype=np.float64)
    order = np.argsort(-scores, kind="stable")

    keep: List[int] = []
    for idx in order:
        if keep:
            ious = _iou_one_to_many(boxes[idx], boxes[keep])
            if np.any(ious >= iou_threshold):
                continue
        keep.append(int(idx))
    return keep


def batched_nms(
    boxes: np.ndarray,
    scores: np.ndarray,
    class_ids: np.ndarray,
    iou_threshold: float,
) -> List[int]:
    """
    Per-class greedy NMS: boxes of different classes never suppress each other.

    Returns:
        Kept indices ordered by descending score (stable across classes).
    """
    if len(boxes) == 0:
        return []
    class_ids = np.asarray(class_ids)
    keep: List[int] = []
    for cls in np.unique(class_ids):
        members = np.flatnonzero(class_ids == cls)
        kept = nms(boxes[members], scores[members], iou_threshold)
        keep.extend(int(members[k]) for k in kept)

    scores = np.asarray(scores, dtype=np.float64)
    keep.sort(key=lambda i: (-scores[i], i))
    return keep
