from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from .masks import MaskConfig
from .postprocess import DecoderConfig, PostConfig


@dataclass(frozen=True)
class PipelineConfig:
    """
    Every tunable of the decode pipeline, fixed at construction time.
    """

    detection_confidence: float = 0.25
    iou_threshold: float = 0.45
    mask_threshold: float = 0.5
    # NMS ignores candidates scoring below this.
    score_threshold: float = 0.0
    # Image -> tensor conversion
    channels: int = 3
    normalize: bool = True
    mean: Optional[Tuple[float, ...]] = None
    std: Optional[Tuple[float, ...]] = None
    swap_rb: bool = False
    channels_first: bool = False
    # Decoder
    input_size: Tuple[int, int] = (640, 640)
    class_agnostic_nms: bool = True
    max_detections: Optional[int] = None
    max_detections_per_class: Optional[int] = None
    class_ids: Optional[Tuple[int, ...]] = None
    # Masks
    mask_apply_sigmoid: bool = False

    def __post_init__(self) -> None:
        for name in ("detection_confidence", "iou_threshold", "mask_threshold"):
            value = getattr(self, name)
            if not 0.0 < value <= 1.0:
                raise ValueError(f"{name} must be within (0, 1]")
        if not 0.0 <= self.score_threshold <= 1.0:
            raise ValueError("score_threshold must be within [0, 1]")
        if not 1 <= self.channels <= 4:
            raise ValueError("channels must be within [1, 4]")
        if self.mean is not None and len(self.mean) != self.channels:
            raise ValueError("mean must have one value per channel")
        if self.std is not None:
            if len(self.std) != self.channels:
                raise ValueError("std must have one value per channel")
            if any(s == 0 for s in self.std):
                raise ValueError("std must not contain zeros")
        if len(self.input_size) != 2 or min(self.input_size) <= 0:
            raise ValueError("input_size must be a (width, height) pair of positive ints")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1 (or null)")
        if self.max_detections_per_class is not None and self.max_detections_per_class < 0:
            raise ValueError("max_detections_per_class must be >= 0 (or null)")

    def post_config(self, class_names: Optional[Sequence[str]] = None) -> PostConfig:
        return PostConfig(
            decoder=DecoderConfig(
                confidence_threshold=self.detection_confidence,
                input_size=self.input_size,
                class_names=tuple(class_names) if class_names is not None else None,
            ),
            iou_threshold=self.iou_threshold,
            score_threshold=self.score_threshold,
            max_detections=self.max_detections,
            max_detections_per_class=self.max_detections_per_class,
            class_agnostic_nms=self.class_agnostic_nms,
            class_ids=self.class_ids,
        )

    def mask_config(self) -> MaskConfig:
        return MaskConfig(threshold=self.mask_threshold, apply_sigmoid=self.mask_apply_sigmoid)


_NUMBER_KEYS = ("detection_confidence", "iou_threshold", "mask_threshold", "score_threshold")
_BOOL_KEYS = ("normalize", "swap_rb", "channels_first", "class_agnostic_nms", "mask_apply_sigmoid")
_OPTIONAL_INT_KEYS = ("max_detections", "max_detections_per_class")
_NUMBER_LIST_KEYS = ("mean", "std")
_NULLABLE_KEYS = _OPTIONAL_INT_KEYS + _NUMBER_LIST_KEYS + ("class_ids",)


def _require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _require_bool(payload: Dict[str, Any], key: str) -> bool:
    value = payload[key]
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false")
    return value


def _require_list(payload: Dict[str, Any], key: str, item_type: Any, what: str) -> Tuple[Any, ...]:
    value = payload[key]
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list")
    for item in value:
        if isinstance(item, bool) or not isinstance(item, item_type):
            raise ValueError(f"{key} must only contain {what}")
    return tuple(value)


def load_pipeline_config(path: Union[str, Path]) -> PipelineConfig:
    """
    Read a ``PipelineConfig`` from a JSON object. Missing keys keep their defaults;
    unknown keys are rejected.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pipeline config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid pipeline config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Pipeline config must be a JSON object")

    allowed = set(PipelineConfig.__dataclass_fields__)
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown pipeline config keys: {unknown}")

    kwargs: Dict[str, Any] = {}
    for key in payload:
        if payload[key] is None and key in _NULLABLE_KEYS:
            kwargs[key] = None
        elif key in _NUMBER_KEYS:
            kwargs[key] = _require_number(payload, key)
        elif key in _BOOL_KEYS:
            kwargs[key] = _require_bool(payload, key)
        elif key in _OPTIONAL_INT_KEYS or key == "channels":
            kwargs[key] = _require_int(payload, key)
        elif key in _NUMBER_LIST_KEYS:
            kwargs[key] = tuple(float(v) for v in _require_list(payload, key, (int, float), "numbers"))
        elif key == "class_ids":
            kwargs[key] = _require_list(payload, key, int, "integers")
        elif key == "input_size":
            size = _require_list(payload, key, int, "integers")
            if len(size) != 2:
                raise ValueError("input_size must be [width, height]")
            kwargs[key] = size

    return PipelineConfig(**kwargs)
