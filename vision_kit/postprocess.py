from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidArgument, NotSupported, ShapeMismatch
from .nms import CandidateProgress, NMSConfig, nms_detections
from .ops import sigmoid_array
from .tensor import Layout, Tensor
from .types import BoundingBox, DetectedObject

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecoderConfig:
    """
    Settings for turning a raw [1, N, C] detector tensor into candidates.
    """

    confidence_threshold: float = 0.25
    # (width, height) of the model input; pixel-space box fields are divided by it.
    input_size: Tuple[int, int] = (640, 640)
    class_names: Optional[Sequence[str]] = None
    # C at or above this is read as [cx, cy, w, h, obj, class scores...];
    # below it as [cx, cy, w, h, conf, class_id].
    legacy_min_channels: int = 85

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0, 1]")
        if len(self.input_size) != 2 or min(self.input_size) <= 0:
            raise ValueError("input_size must be a (width, height) pair of positive ints")
        if self.legacy_min_channels < 6:
            raise ValueError("legacy_min_channels must be >= 6")


def _looks_like_logit(values: np.ndarray) -> np.ndarray:
    # a probability can never leave [0, 1]
    return (values < 0.0) | (values > 1.0)


class DetectionDecoder:
    """
    Decode detector output into ``DetectedObject`` candidates.

    Supported layouts (per candidate row):
    - C >= 85: [cx, cy, w, h, objectness, class_0 ... class_{C-6}]
    - 6 <= C < 85: [cx, cy, w, h, conf, class_id]

    A tensor flagged ``Layout.CHANNELS_FIRST`` is read as [1, C, N].
    Box fields may be normalised (0-1) or in model-input pixels; both end up in
    source-image pixels.
    """

    def __init__(self, cfg: DecoderConfig = DecoderConfig()):
        self.cfg = cfg

    def decode(self, tensor: Tensor, image_width: int, image_height: int) -> List[DetectedObject]:
        if image_width <= 0 or image_height <= 0:
            raise InvalidArgument(f"Image size must be positive, got {image_width}x{image_height}")

        rows = self._rows(tensor)
        if rows.shape[0] == 0:
            return []

        if rows.shape[1] >= self.cfg.legacy_min_channels:
            scores, class_ids = self._legacy_scores(rows)
        else:
            scores, class_ids = self._compact_scores(rows)

        keep = scores >= self.cfg.confidence_threshold
        if not np.any(keep):
            return []
        boxes = self._boxes(rows[keep, :4], image_width, image_height)

        detections = [
            DetectedObject(
                class_id=int(cls_id),
                class_name=self.class_name(int(cls_id)),
                confidence=float(score),
                bounding_box=BoundingBox(float(x), float(y), float(w), float(h)),
            )
            for (x, y, w, h), score, cls_id in zip(boxes, scores[keep], class_ids[keep])
        ]
        LOGGER.debug(
            "Decoded %d of %d candidates at confidence >= %.2f",
            len(detections),
            rows.shape[0],
            self.cfg.confidence_threshold,
        )
        return detections

    def class_name(self, class_id: int) -> str:
        names = self.cfg.class_names
        if names is not None and 0 <= class_id < len(names):
            return names[class_id]
        return f"class_{class_id}"

    # ------------------------------------------------------------------ #
    # Helper internal
    # ------------------------------------------------------------------ #
    def _rows(self, tensor: Tensor) -> np.ndarray:
        p = tensor.view()
        if p.ndim != 3:
            raise ShapeMismatch(f"Detector output must be [1, N, C], got shape {p.shape}", p.shape)
        if p.shape[0] != 1:
            raise NotSupported(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
        if tensor.layout is Layout.CHANNELS_FIRST:
            p = p.transpose(0, 2, 1)
        rows = np.array(p[0], dtype=np.float64)
        if rows.shape[1] < 6:
            raise InvalidArgument(f"Detector output needs at least 6 fields per candidate, got {rows.shape[1]}")
        return rows

    def _legacy_scores(self, rows: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        objectness = rows[:, 4]
        class_scores = rows[:, 5:]
        class_ids = np.argmax(class_scores, axis=1)
        best = class_scores[np.arange(rows.shape[0]), class_ids]

        # objectness and class scores come from the same head: if either is a raw
        # logit, both are
        raw = _looks_like_logit(objectness) | _looks_like_logit(best)
        objectness = np.where(raw, sigmoid_array(objectness), objectness)
        best = np.where(raw, sigmoid_array(best), best)
        return objectness * best, class_ids

    def _compact_scores(self, rows: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        conf = rows[:, 4]
        conf = np.where(_looks_like_logit(conf), sigmoid_array(conf), conf)
        class_ids = np.rint(rows[:, 5]).astype(np.int64)
        return conf, class_ids

    def _boxes(self, cxcywh: np.ndarray, image_width: int, image_height: int) -> np.ndarray:
        in_w, in_h = self.cfg.input_size
        pixel_space = np.any(cxcywh > 1.0, axis=1)
        scale = np.array([in_w, in_h, in_w, in_h], dtype=np.float64)
        boxes = np.where(pixel_space[:, None], cxcywh / scale, cxcywh)
        boxes = np.clip(boxes, 0.0, 1.0)

        cx, cy, w, h = boxes.T
        return np.stack(
            [
                (cx - w / 2) * image_width,
                (cy - h / 2) * image_height,
                w * image_width,
                h * image_height,
            ],
            axis=1,
        )


@dataclass(frozen=True)
class PostConfig:
    """
    Full post-processing: decode, optional class filter, NMS, top-k.
    """

    decoder: DecoderConfig = DecoderConfig()
    iou_threshold: float = 0.45
    score_threshold: float = 0.0
    # None keeps every survivor.
    max_detections: Optional[int] = None
    # 0/None keeps every survivor of a class.
    max_detections_per_class: Optional[int] = None
    # If False, skip NMS and only keep top `max_detections` by score.
    apply_nms: bool = True
    # If False, runs per-class NMS then merges results by score.
    class_agnostic_nms: bool = True
    # Optional list of class IDs to keep; None keeps all.
    class_ids: Optional[Sequence[int]] = None

    def __post_init__(self) -> None:
        if not 0.0 < self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be within (0, 1]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1 (or None)")
        if self.max_detections_per_class is not None and self.max_detections_per_class < 0:
            raise ValueError("max_detections_per_class must be >= 0 (or None)")


class DetectionPostprocessor:
    def __init__(self, cfg: PostConfig = PostConfig()):
        self.cfg = cfg
        self.decoder = DetectionDecoder(cfg.decoder)

    def process(
        self,
        tensor: Tensor,
        image_width: int,
        image_height: int,
        progress: Optional[CandidateProgress] = None,
    ) -> List[DetectedObject]:
        """
        Convert raw detector output into final detections, highest confidence first.

        Args:
            progress: forwarded to NMS, called once per visited candidate
        """

        detections = self.decoder.decode(tensor, image_width, image_height)
        if not detections:
            return []

        if self.cfg.class_ids is not None:
            wanted = {int(c) for c in self.cfg.class_ids}
            detections = [d for d in detections if d.class_id in wanted]
            if not detections:
                return []

        if self.cfg.apply_nms:
            detections = self._apply_nms(detections, progress)
        return self._select_topk(detections)

    def _nms_config(self) -> NMSConfig:
        return NMSConfig(iou_threshold=self.cfg.iou_threshold, score_threshold=self.cfg.score_threshold)

    def _select_topk(self, detections: List[DetectedObject]) -> List[DetectedObject]:
        ordered = sorted(detections, key=lambda d: -d.confidence)
        if self.cfg.max_detections is not None:
            ordered = ordered[: self.cfg.max_detections]
        return ordered

    def _apply_nms(
        self,
        detections: List[DetectedObject],
        progress: Optional[CandidateProgress],
    ) -> List[DetectedObject]:
        nms_cfg = self._nms_config()

        if self.cfg.class_agnostic_nms:
            return nms_detections(detections, nms_cfg, progress)

        by_class: Dict[int, List[DetectedObject]] = {}
        for det in detections:
            by_class.setdefault(det.class_id, []).append(det)

        cap = self.cfg.max_detections_per_class or None
        total = len(detections)
        visited = 0
        kept: List[DetectedObject] = []
        for cls_id in sorted(by_class):
            group = by_class[cls_id]
            group_progress = None
            if progress is not None:
                # one running count across every class group
                def group_progress(done: int, _group_total: int, base: int = visited) -> None:
                    progress(base + done, total)

            survivors = nms_detections(group, nms_cfg, group_progress)
            visited += len(group)
            if cap is not None:
                survivors = survivors[:cap]
            kept.extend(survivors)
        return kept
