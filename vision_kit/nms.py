from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np

from .errors import InvalidArgument, ShapeMismatch
from .types import DetectedObject

LOGGER = logging.getLogger(__name__)

CandidateProgress = Callable[[int, int], None]


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    # Candidates scoring below this are neither kept nor allowed to suppress others.
    score_threshold: float = 0.0
    max_detections: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0.0 < self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be within (0, 1]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1 (or None)")


def box_iou(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    """
    IoU of one xywh box against an (M, 4) array of xywh boxes.

    Zero or negative intersection width/height counts as no overlap.
    """

    ix1 = np.maximum(box[0], others[:, 0])
    iy1 = np.maximum(box[1], others[:, 1])
    ix2 = np.minimum(box[0] + box[2], others[:, 0] + others[:, 2])
    iy2 = np.minimum(box[1] + box[3], others[:, 1] + others[:, 3])
    iw = ix2 - ix1
    ih = iy2 - iy1
    overlap = (iw > 0) & (ih > 0)
    inter = np.where(overlap, iw * ih, 0.0)

    area = max(float(box[2]), 0.0) * max(float(box[3]), 0.0)
    areas = np.maximum(others[:, 2], 0.0) * np.maximum(others[:, 3], 0.0)
    union = area + areas - inter
    safe_union = np.where(union > 0, union, 1.0)
    return np.where(overlap & (union > 0), inter / safe_union, 0.0)


def nms(
    boxes: np.ndarray,
    scores: np.ndarray,
    cfg: NMSConfig,
    progress: Optional[CandidateProgress] = None,
) -> np.ndarray:
    """
    Greedy NMS. Expects boxes shape (N, 4) in xywh and scores shape (N,).

    Candidates are visited by descending score, ties broken by input index.
    Returns indices of kept boxes in visiting order.
    """

    boxes = np.asarray(boxes, dtype=np.float64)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if boxes.size == 0 and scores.size == 0:
        return np.empty((0,), dtype=np.int64)
    if boxes.ndim != 2 or boxes.shape[1] != 4:
        raise ShapeMismatch(f"boxes must be shaped (N, 4), got {boxes.shape}", boxes.shape)
    if boxes.shape[0] != scores.shape[0]:
        raise InvalidArgument(f"Got {boxes.shape[0]} boxes but {scores.shape[0]} scores")

    n = boxes.shape[0]
    order = np.argsort(-scores, kind="stable")
    suppressed = np.zeros(n, dtype=bool)
    keep: List[int] = []

    for pos, i in enumerate(order):
        if progress is not None:
            progress(pos + 1, n)
        if suppressed[i] or scores[i] < cfg.score_threshold:
            continue
        keep.append(int(i))
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break

        later = order[pos + 1 :]
        later = later[~suppressed[later]]
        if later.size == 0:
            continue
        iou = box_iou(boxes[i], boxes[later])
        suppressed[later[iou > cfg.iou_threshold]] = True

    LOGGER.debug("NMS kept %d of %d candidates", len(keep), n)
    return np.array(keep, dtype=np.int64)


def nms_detections(
    detections: Sequence[DetectedObject],
    cfg: NMSConfig,
    progress: Optional[CandidateProgress] = None,
) -> List[DetectedObject]:
    """Run ``nms`` over detections; returns the survivors by descending confidence."""

    if not detections:
        return []
    boxes = np.array([d.bounding_box.as_xywh() for d in detections], dtype=np.float64)
    scores = np.array([d.confidence for d in detections], dtype=np.float64)
    return [detections[i] for i in nms(boxes, scores, cfg, progress)]
