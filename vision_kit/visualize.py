from __future__ import annotations

from typing import Iterable, Optional, Tuple

import numpy as np

from .masks import class_color
from .types import BoundingBox, DetectedObject, ImageSegment

PixelBox = Tuple[int, int, int, int]


def _cv2():
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for drawing. Install with `pip install opencv-python`.") from e
    return cv2


def _bgr(rgb: Tuple[int, int, int]) -> Tuple[int, int, int]:
    r, g, b = rgb
    return int(b), int(g), int(r)


def _check_canvas(image_bgr: np.ndarray) -> Tuple[int, int]:
    shape = getattr(image_bgr, "shape", None)
    if shape is None:
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if len(shape) != 3 or shape[2] != 3:
        raise ValueError(f"image_bgr must be shaped (H, W, 3), got {shape}")
    return int(shape[0]), int(shape[1])


def _pixel_box(box: BoundingBox, width: int, height: int) -> Optional[PixelBox]:
    """Round a box to integer corners inside the canvas; None if nothing is visible."""

    x1 = min(max(int(round(box.x)), 0), width - 1)
    y1 = min(max(int(round(box.y)), 0), height - 1)
    x2 = min(max(int(round(box.x2)), 0), width - 1)
    y2 = min(max(int(round(box.y2)), 0), height - 1)
    if x2 < x1 or y2 < y1:
        return None
    return x1, y1, x2, y2


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[DetectedObject],
    *,
    show_score: bool = True,
    box_thickness: int = 1,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Return a copy of a BGR image with each detection outlined in its class colour.

    The label (class name, plus confidence with ``show_score``) sits on a filled tab
    just above the box, or just inside it when the box touches the top edge.
    """

    cv2 = _cv2()
    height, width = _check_canvas(image_bgr)
    canvas = image_bgr.copy()
    font = cv2.FONT_HERSHEY_SIMPLEX

    for det in detections:
        corners = _pixel_box(det.bounding_box, width, height)
        if corners is None:
            continue
        left, top, right, bottom = corners
        colour = _bgr(class_color(det.class_id))
        cv2.rectangle(canvas, (left, top), (right, bottom), colour, thickness=box_thickness)

        text = f"{det.class_name} {det.confidence:.2f}" if show_score else det.class_name
        (text_w, text_h), descent = cv2.getTextSize(text, font, font_scale, font_thickness)
        tab_h = text_h + descent
        tab_top = top - tab_h if top >= tab_h else top
        tab_bottom = min(tab_top + tab_h, height - 1)
        cv2.rectangle(canvas, (left, tab_top), (min(left + text_w, width - 1), tab_bottom), colour, thickness=-1)
        cv2.putText(
            canvas,
            text,
            (left, min(tab_top + text_h, height - 1)),
            font,
            font_scale,
            (255, 255, 255),
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return canvas


def overlay_segments(image_bgr: np.ndarray, segments: Iterable[ImageSegment], *, opacity: float = 0.6) -> np.ndarray:
    """
    Blend each segment's mask onto a copy of the image at its bounding box.

    Set mask pixels take the segment colour at `opacity`; everything else is untouched.
    """

    if not 0.0 <= opacity <= 1.0:
        raise ValueError("opacity must be within [0, 1]")
    h, w = _check_canvas(image_bgr)
    out = image_bgr.astype(np.float32)

    for seg in segments:
        if seg.mask is None:
            continue
        box = seg.bounding_box
        x0 = int(round(box.x))
        y0 = int(round(box.y))
        # clip the mask window to the image
        mx0, my0 = max(0, -x0), max(0, -y0)
        x0, y0 = max(0, x0), max(0, y0)
        x1 = min(w, x0 + seg.mask.width - mx0)
        y1 = min(h, y0 + seg.mask.height - my0)
        if x1 <= x0 or y1 <= y0:
            continue

        on = seg.mask.is_set[my0 : my0 + (y1 - y0), mx0 : mx0 + (x1 - x0)]
        region = out[y0:y1, x0:x1]
        region[on] = region[on] * (1.0 - opacity) + np.array(_bgr(seg.color), dtype=np.float32) * opacity

    return np.clip(out, 0, 255).astype(image_bgr.dtype)
