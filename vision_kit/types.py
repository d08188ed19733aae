from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from .masks import Bitmap, class_color

Color = Tuple[int, int, int]


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned box in source-image pixels, top-left origin.
    """

    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def as_xywh(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.width, self.height

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x2, self.y2

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px < self.x2 and self.y <= py < self.y2

    def iou(self, other: "BoundingBox") -> float:
        iw = min(self.x2, other.x2) - max(self.x, other.x)
        ih = min(self.y2, other.y2) - max(self.y, other.y)
        if iw <= 0 or ih <= 0:
            return 0.0
        inter = iw * ih
        union = self.area + other.area - inter
        return inter / union if union > 0 else 0.0

    def union(self, other: "BoundingBox") -> "BoundingBox":
        x1 = min(self.x, other.x)
        y1 = min(self.y, other.y)
        x2 = max(self.x2, other.x2)
        y2 = max(self.y2, other.y2)
        return BoundingBox(x1, y1, x2 - x1, y2 - y1)

    def normalized(self, image_width: int, image_height: int) -> "BoundingBox":
        return BoundingBox(
            self.x / image_width,
            self.y / image_height,
            self.width / image_width,
            self.height / image_height,
        )


@dataclass(frozen=True)
class DetectedObject:
    """
    One decoded detection. Immutable; use ``dataclasses.replace`` to derive variants.
    """

    class_id: int
    class_name: str
    confidence: float
    bounding_box: BoundingBox

    @property
    def area(self) -> float:
        return self.bounding_box.area

    @property
    def center(self) -> Tuple[float, float]:
        return self.bounding_box.center

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.bounding_box.as_xyxy()

    def normalized_box(self, image_width: int, image_height: int) -> BoundingBox:
        return self.bounding_box.normalized(image_width, image_height)

    def overlaps_with(self, other: "DetectedObject", iou_threshold: float = 0.5) -> bool:
        return self.bounding_box.iou(other.bounding_box) >= iou_threshold

    def distance_to(self, other: "DetectedObject") -> float:
        (ax, ay), (bx, by) = self.center, other.center
        return math.hypot(ax - bx, ay - by)

    def merge_with(self, other: "DetectedObject", merge_confidence: bool = True, merge_box: bool = False) -> "DetectedObject":
        """
        Combine two detections of the same object.

        With ``merge_confidence`` the more confident class label wins; with
        ``merge_box`` the result covers both boxes.
        """

        merged = self
        if merge_confidence and other.confidence > self.confidence:
            merged = replace(merged, class_id=other.class_id, class_name=other.class_name, confidence=other.confidence)
        if merge_box:
            merged = replace(merged, bounding_box=self.bounding_box.union(other.bounding_box))
        return merged

    def __str__(self) -> str:
        b = self.bounding_box
        return (
            f"{self.class_name} ({self.class_id}) {self.confidence:.2f} "
            f"@ ({b.x:.1f}, {b.y:.1f}, {b.width:.1f}, {b.height:.1f})"
        )


@dataclass
class ImageSegment:
    """
    A detection plus its decoded mask. The mask covers the detection's bounding box.
    """

    detected_object: DetectedObject
    mask: Optional[Bitmap] = None
    color: Color = (255, 255, 255)
    area: float = field(default=0.0)

    @classmethod
    def create(
        cls,
        detected_object: DetectedObject,
        mask: Optional[Bitmap] = None,
        color: Optional[Color] = None,
    ) -> "ImageSegment":
        if color is None:
            color = class_color(detected_object.class_id)
        seg = cls(detected_object=detected_object, mask=mask, color=color)
        seg.area = seg.compute_area()
        return seg

    @property
    def bounding_box(self) -> BoundingBox:
        return self.detected_object.bounding_box

    @property
    def class_id(self) -> int:
        return self.detected_object.class_id

    @property
    def class_name(self) -> str:
        return self.detected_object.class_name

    @property
    def confidence(self) -> float:
        return self.detected_object.confidence

    def compute_area(self) -> float:
        """Set-pixel count of the mask, or the box area when there is no mask."""

        if self.mask is None:
            return self.bounding_box.area
        return float(self.mask.count_set())

    def contains_point(self, px: float, py: float) -> bool:
        box = self.bounding_box
        if not box.contains(px, py):
            return False
        if self.mask is None:
            return True

        mx = int(math.floor((px - box.x) / box.width * self.mask.width))
        my = int(math.floor((py - box.y) / box.height * self.mask.height))
        mx = min(max(mx, 0), self.mask.width - 1)
        my = min(max(my, 0), self.mask.height - 1)
        return bool(self.mask.is_set[my, mx])
