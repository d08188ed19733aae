"""
Turn segmentation model output into RGBA bitmaps.

Single-channel input is a probability map: a pixel is set (opaque) when its value
strictly exceeds the threshold. Multi-channel input holds per-class scores: the
arg-max channel wins and the pixel takes that class's colour if the winning score
exceeds the threshold. There is no partial alpha anywhere.
"""

from __future__ import annotations

import colorsys
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np

from .errors import InvalidArgument, NotSupported, ShapeMismatch
from .ops import sigmoid_array
from .tensor import Layout, Tensor

LOGGER = logging.getLogger(__name__)

GOLDEN_RATIO_CONJUGATE = 0.61803398875

RowProgress = Callable[[int, int], None]


def class_color(class_index: int, saturation: float = 0.75, value: float = 0.95) -> Tuple[int, int, int]:
    """
    Stable RGB colour for a class index.

    Hues step by the golden-ratio conjugate, which keeps neighbouring indices far
    apart on the colour wheel.
    """

    hue = (class_index * GOLDEN_RATIO_CONJUGATE) % 1.0
    r, g, b = colorsys.hsv_to_rgb(hue, saturation, value)
    return int(round(r * 255)), int(round(g * 255)), int(round(b * 255))


@dataclass
class Bitmap:
    """
    RGBA ``uint8`` image shaped (H, W, 4). ``labels`` holds the class index per
    pixel (-1 where unset) when the bitmap came from a multi-channel decode.
    """

    pixels: np.ndarray
    labels: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4:
            raise ShapeMismatch(f"Bitmap pixels must be (H, W, 4), got {self.pixels.shape}", self.pixels.shape)
        if self.labels is not None and self.labels.shape != self.pixels.shape[:2]:
            raise ShapeMismatch(
                f"Bitmap labels {self.labels.shape} do not match pixels {self.pixels.shape[:2]}",
                self.labels.shape,
                self.pixels.shape[:2],
            )

    @classmethod
    def empty(cls, width: int, height: int) -> "Bitmap":
        return cls(
            pixels=np.zeros((height, width, 4), dtype=np.uint8),
            labels=np.full((height, width), -1, dtype=np.int32),
        )

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def is_set(self) -> np.ndarray:
        return self.pixels[:, :, 3] > 0

    def count_set(self) -> int:
        return int(np.count_nonzero(self.is_set))

    def copy(self) -> "Bitmap":
        return Bitmap(
            pixels=self.pixels.copy(),
            labels=None if self.labels is None else self.labels.copy(),
        )


@dataclass(frozen=True)
class MaskConfig:
    threshold: float = 0.5
    # Colour of set pixels for single-channel masks.
    foreground: Tuple[int, int, int] = (255, 255, 255)
    # Squash raw logits through a sigmoid before thresholding.
    apply_sigmoid: bool = False

    def __post_init__(self) -> None:
        if len(self.foreground) != 3 or any(not 0 <= int(c) <= 255 for c in self.foreground):
            raise ValueError("foreground must be an RGB triple within [0, 255]")


def _as_hwc(tensor: Tensor) -> np.ndarray:
    arr = tensor.view()
    channels_first = tensor.layout is Layout.CHANNELS_FIRST

    if arr.ndim == 4:
        if arr.shape[0] != 1:
            raise NotSupported(f"Mask batch > 1 is not supported (got shape {arr.shape})")
        arr = arr[0]
    if arr.ndim == 3:
        planes = arr.transpose(1, 2, 0) if channels_first else arr
    elif arr.ndim == 2:
        planes = arr[:, :, None]
    else:
        raise ShapeMismatch(f"Unsupported mask tensor shape: {arr.shape}", arr.shape)

    if planes.shape[2] == 0:
        raise InvalidArgument(f"Mask tensor has no channels (shape {arr.shape})")
    return planes


class MaskDecoder:
    def __init__(self, cfg: MaskConfig = MaskConfig()):
        self.cfg = cfg

    def decode(self, tensor: Tensor, progress: Optional[RowProgress] = None) -> Bitmap:
        """
        Decode one mask tensor.

        Accepted shapes: [1, H, W, C], [H, W, C], [H, W], or the channels-first
        forms [1, C, H, W] / [C, H, W] when the tensor is flagged ``CHANNELS_FIRST``.

        Args:
            progress: called as ``progress(rows_done, height)`` after each row
        """

        planes = _as_hwc(tensor)
        if self.cfg.apply_sigmoid:
            planes = sigmoid_array(planes)

        h, w, c = planes.shape
        bitmap = Bitmap.empty(w, h)
        threshold = self.cfg.threshold
        cols = np.arange(w)
        palette = np.array([class_color(i) for i in range(c)], dtype=np.uint8) if c > 1 else None

        for row in range(h):
            if palette is None:
                on = planes[row, :, 0] > threshold
                bitmap.pixels[row, on, :3] = self.cfg.foreground
                bitmap.labels[row, on] = 0
            else:
                best = np.argmax(planes[row], axis=1)
                on = planes[row, cols, best] > threshold
                bitmap.pixels[row, on, :3] = palette[best[on]]
                bitmap.labels[row, on] = best[on]
            bitmap.pixels[row, on, 3] = 255
            if progress is not None:
                progress(row + 1, h)

        LOGGER.debug("Decoded %dx%d mask (%d channel(s)), %d pixels set", w, h, c, bitmap.count_set())
        return bitmap


def resize_bitmap(bitmap: Bitmap, width: int, height: int) -> Bitmap:
    """Nearest-neighbour resize; never introduces intermediate alpha or labels."""

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for resize_bitmap(). Install with `pip install opencv-python`.") from e

    if width < 1 or height < 1:
        raise InvalidArgument(f"Target size must be >= 1x1, got {width}x{height}")
    if bitmap.width == 0 or bitmap.height == 0:
        raise InvalidArgument(f"Cannot resize an empty {bitmap.width}x{bitmap.height} bitmap")
    if (bitmap.width, bitmap.height) == (width, height):
        return bitmap.copy()

    pixels = cv2.resize(bitmap.pixels, (width, height), interpolation=cv2.INTER_NEAREST)
    labels = None
    if bitmap.labels is not None:
        # float32 holds small class indices exactly
        labels = cv2.resize(bitmap.labels.astype(np.float32), (width, height), interpolation=cv2.INTER_NEAREST)
        labels = labels.astype(np.int32)
    return Bitmap(pixels=pixels, labels=labels)


def mask_iou(a: Bitmap, b: Bitmap) -> float:
    """Set-pixel IoU; `b` is resized onto `a` when their sizes differ."""

    if (a.width, a.height) != (b.width, b.height):
        b = resize_bitmap(b, a.width, a.height)
    sa, sb = a.is_set, b.is_set
    union = np.count_nonzero(sa | sb)
    if union == 0:
        return 0.0
    return float(np.count_nonzero(sa & sb)) / float(union)
